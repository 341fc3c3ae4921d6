# backend/settings/__init__.py

from os import environ
from split_settings.tools import optional, include

# Environment name: 'local', 'production' or 'test'
ENV = environ.get('DJANGO_ENV', 'local')

base_settings = [
    # Shared configuration (apps, middleware, database, channels...)
    'base.py',

    # Environment overrides (local.py, production.py, test.py)
    f'{ENV}.py',

    # Untracked developer overrides
    optional('local_settings.py'),
]

include(*base_settings)
