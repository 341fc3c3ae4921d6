from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, authentication_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle

from .services import fetch_og_image, PreviewFetchError


class OGImageRateThrottle(AnonRateThrottle):
    """Every call makes an outbound request, so keep it bounded per client IP."""
    scope = 'og_image'


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([OGImageRateThrottle])
def og_image(request):
    """Preview image of the page at `?url=`."""
    url = request.query_params.get('url')
    if not url:
        return Response({'error': 'URL is required'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        image = fetch_og_image(url)
    except PreviewFetchError:
        return Response(
            {'error': 'Failed to fetch OG image'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return Response({'ogImage': image})
