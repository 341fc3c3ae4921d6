import pytest
import httpx
from unittest.mock import patch
from django.urls import reverse
from rest_framework import status

from apps.previews.services import extract_og_image, fetch_og_image, PreviewFetchError
from apps.previews.views import OGImageRateThrottle

PAGE = """
<html><head>
  <title>Lamp</title>
  <meta property="og:title" content="Desk lamp">
  <meta property="og:image" content="{image}">
</head><body></body></html>
"""


def page_response(url, html, status_code=200):
    return httpx.Response(status_code, text=html, request=httpx.Request('GET', url))


@pytest.mark.unit
class TestExtractOGImage:
    """Parsing og:image out of a page"""

    def test_absolute_image(self):
        html = PAGE.format(image='https://cdn.example.com/lamp.jpg')

        assert extract_og_image(html, 'https://shop.example.com/p/1') == 'https://cdn.example.com/lamp.jpg'

    def test_relative_image_resolved_against_page(self):
        html = PAGE.format(image='/img/lamp.jpg')

        assert extract_og_image(html, 'https://shop.example.com/p/1') == 'https://shop.example.com/img/lamp.jpg'

    def test_page_without_og_image(self):
        html = '<html><head><meta name="description" content="x"></head></html>'

        assert extract_og_image(html, 'https://shop.example.com/') is None

    def test_empty_content(self):
        assert extract_og_image(PAGE.format(image=''), 'https://shop.example.com/') is None


@pytest.mark.unit
class TestFetchOGImage:
    """Fetching pages"""

    @patch('apps.previews.services.httpx.Client')
    def test_sends_browser_headers(self, mock_client_cls):
        url = 'https://shop.example.com/p/1'
        client = mock_client_cls.return_value.__enter__.return_value
        client.get.return_value = page_response(url, PAGE.format(image='/a.png'))

        assert fetch_og_image(url) == 'https://shop.example.com/a.png'

        client.get.assert_called_once_with(url)
        kwargs = mock_client_cls.call_args.kwargs
        assert kwargs['headers']['Accept-Language'] == 'en-US,en;q=0.9'
        assert 'Mozilla/5.0' in kwargs['headers']['User-Agent']
        assert kwargs['follow_redirects'] is True

    def test_error_page_still_parsed(self):
        url = 'https://shop.example.com/gone'
        with patch.object(httpx.Client, 'get', return_value=page_response(url, PAGE.format(image='/x.png'), 404)):
            assert fetch_og_image(url) == 'https://shop.example.com/x.png'

    def test_network_failure(self):
        with patch.object(httpx.Client, 'get', side_effect=httpx.ConnectError('refused')):
            with pytest.raises(PreviewFetchError):
                fetch_og_image('https://shop.example.com/p/1')

    def test_timeout(self):
        with patch.object(httpx.Client, 'get', side_effect=httpx.ReadTimeout('slow')):
            with pytest.raises(PreviewFetchError):
                fetch_og_image('https://shop.example.com/p/1', timeout=0.1)


@pytest.mark.integration
class TestOGImageEndpoint:
    """GET /api/og-image"""

    def test_missing_url(self, api_client):
        response = api_client.get(reverse('og-image'))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {'error': 'URL is required'}

    def test_empty_url(self, api_client):
        response = api_client.get(reverse('og-image'), {'url': ''})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {'error': 'URL is required'}

    @patch('apps.previews.views.fetch_og_image')
    def test_image_found(self, mock_fetch, api_client):
        mock_fetch.return_value = 'https://cdn.example.com/lamp.jpg'

        response = api_client.get(reverse('og-image'), {'url': 'https://shop.example.com/p/1'})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {'ogImage': 'https://cdn.example.com/lamp.jpg'}
        mock_fetch.assert_called_once_with('https://shop.example.com/p/1')

    @patch('apps.previews.views.fetch_og_image')
    def test_no_image(self, mock_fetch, api_client):
        mock_fetch.return_value = None

        response = api_client.get(reverse('og-image'), {'url': 'https://shop.example.com/p/1'})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {'ogImage': None}

    @patch('apps.previews.views.fetch_og_image')
    def test_fetch_failure(self, mock_fetch, api_client):
        mock_fetch.side_effect = PreviewFetchError('connection refused')

        response = api_client.get(reverse('og-image'), {'url': 'https://shop.example.com/p/1'})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {'error': 'Failed to fetch OG image'}

    def test_rejected_host_name(self):
        with patch.object(httpx.Client, 'get', side_effect=UnicodeError("encoding with 'idna' codec failed")):
            with pytest.raises(PreviewFetchError):
                fetch_og_image('http://a..b/')

    def test_unfetchable_url_keeps_error_body(self, api_client):
        with patch.object(httpx.Client, 'get', side_effect=UnicodeError("encoding with 'idna' codec failed")):
            response = api_client.get(reverse('og-image'), {'url': 'http://a..b/'})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {'error': 'Failed to fetch OG image'}

    @patch('apps.previews.views.fetch_og_image')
    def test_rate_limited(self, mock_fetch, api_client):
        mock_fetch.return_value = None
        url = reverse('og-image')

        with patch.object(OGImageRateThrottle, 'THROTTLE_RATES', {'og_image': '2/minute'}):
            codes = [api_client.get(url, {'url': 'https://shop.example.com/p/1'}).status_code for _ in range(3)]

        assert codes == [status.HTTP_200_OK, status.HTTP_200_OK, status.HTTP_429_TOO_MANY_REQUESTS]
        assert mock_fetch.call_count == 2
