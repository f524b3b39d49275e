"""
Settings package for the Academy course marketplace.
Uses modular approach with base/dev/prod/testing settings selected by DJANGO_ENV.
"""
import os

DJANGO_ENV = os.environ.get('DJANGO_ENV', 'development')

if DJANGO_ENV == 'production':
    from .production import *  # noqa: F401,F403
elif DJANGO_ENV == 'testing':
    from .testing import *  # noqa: F401,F403
else:
    from .development import *  # noqa: F401,F403
