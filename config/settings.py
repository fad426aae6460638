"""
Django settings for the waypost project.

Every deployment-specific value is read through python-decouple, so the
server is configured from the environment or a ``.env`` file next to
``manage.py``.

https://docs.djangoproject.com/en/5.0/ref/settings/
"""

import logging
import time
from pathlib import Path

from decouple import Csv, config

BASE_DIR: Path = Path(__file__).resolve().parent.parent


# Core

SECRET_KEY: str = str(config('SECRET_KEY', default='django-insecure-waypost-dev-only'))

DEBUG: bool = config('DEBUG', default=True, cast=bool)

ALLOWED_HOSTS: list[str] = config('ALLOWED_HOSTS', default='*', cast=Csv())

CSRF_TRUSTED_ORIGINS: list[str] = config('CSRF_TRUSTED_ORIGINS', default='', cast=Csv())

INSTALLED_APPS: list[str] = [
    'daphne',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'channels',
    'waypost.apps.WaypostConfig',
]

MIDDLEWARE: list[str] = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF: str = 'config.urls'

# Only the admin renders templates
TEMPLATES: list[dict] = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION: str = 'config.asgi.application'

DATABASES: dict = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': Path(str(config('WAYPOST_DB_PATH', default=str(BASE_DIR / 'db.sqlite3')))),
    }
}

TIME_ZONE: str = 'UTC'
USE_TZ: bool = True
USE_I18N: bool = False

STATIC_URL: str = 'static/'

DEFAULT_AUTO_FIELD: str = 'django.db.models.BigAutoField'

# Log entries carry base64 captures inline in the JSON body
DATA_UPLOAD_MAX_MEMORY_SIZE: int = config('WAYPOST_MAX_BODY_BYTES', default=50 * 1024 * 1024, cast=int)


# Waypost

# Directory the ingest endpoint writes decoded captures into
UPLOAD_DIR: Path = Path(str(config('UPLOAD_DIR', default=str(BASE_DIR / 'uploads'))))

# Number of newest rows the consolidated views are computed over
WAYPOST_FEED_PAGE_SIZE: int = config('WAYPOST_FEED_PAGE_SIZE', default=100, cast=int)

# Minimum movement (km) for a same-IP record to count as a new activity event
WAYPOST_DEDUP_DISTANCE_KM: float = config('WAYPOST_DEDUP_DISTANCE_KM', default=0.05, cast=float)


REST_FRAMEWORK: dict = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_PARSER_CLASSES': [
        'rest_framework.parsers.JSONParser',
    ],
    # Agents are anonymous
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'UNAUTHENTICATED_USER': None,
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.LimitOffsetPagination',
    'PAGE_SIZE': WAYPOST_FEED_PAGE_SIZE,
}

CHANNEL_LAYERS: dict = {
    'default': {
        'BACKEND': 'channels.layers.InMemoryChannelLayer',
    }
}


# Logging

# Below DEBUG; health check access lines are demoted to it
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, 'TRACE')


class HealthCheckFilter(logging.Filter):
    """Demote ``/health/`` access lines to TRACE; they show only when waypost logs at TRACE."""

    def filter(self, record: logging.LogRecord) -> bool:
        if '/health/' in str(record.msg) or any('/health/' in str(arg) for arg in record.args or ()):
            record.levelno = TRACE_LEVEL
            record.levelname = 'TRACE'
            return logging.getLogger('waypost').isEnabledFor(TRACE_LEVEL)
        return True


class LocalTimeFormatter(logging.Formatter):
    """Formatter that stamps records in server local time."""

    converter = time.localtime


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'health_check_filter': {
            '()': 'config.settings.HealthCheckFilter',
        },
    },
    'formatters': {
        'verbose': {
            '()': 'config.settings.LocalTimeFormatter',
            'format': '%(asctime)s.%(msecs)03d %(levelname)-7s %(module)s %(message)s',
            'datefmt': '%Y%m%d-%H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
            'filters': ['health_check_filter'],
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'waypost': {
            'handlers': ['console'],
            'level': str(config('WAYPOST_LOG_LEVEL', default='INFO')).upper(),
            'propagate': False,
        },
        'django.server': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'daphne': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
