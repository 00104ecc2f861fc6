"""
Django settings for the larder project.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from a .env file if present
load_dotenv()


def env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def env_list(name: str, default: str = "") -> list:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-larder-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', 'false')

ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1')


# Application definition

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'simple_history',
    'channels',

    'apps.inventory.apps.InventoryAppConfig',
    'apps.alerts.apps.AlertsConfig',
    'apps.forecasting.apps.ForecastingConfig',
]

MIDDLEWARE = [
    'simple_history.middleware.HistoryRequestMiddleware',
]

ASGI_APPLICATION = 'larder.asgi.application'


# Database

DATABASES = {
    'default': {
        'ENGINE': os.getenv('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.getenv('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv('DB_USER', ''),
        'PASSWORD': os.getenv('DB_PASSWORD', ''),
        'HOST': os.getenv('DB_HOST', ''),
        'PORT': os.getenv('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Cache (inventory read caching, 5 minute TTL per entry)

CACHES = {
    'default': {
        'BACKEND': os.getenv('CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': os.getenv('CACHE_LOCATION', 'larder-default'),
    }
}

LARDER_CACHE_ALIAS = os.getenv('LARDER_CACHE_ALIAS', 'default')


# Channels (real-time alert and change broadcasts)

CHANNEL_LAYERS = {
    'default': {
        'BACKEND': os.getenv('CHANNEL_LAYER_BACKEND', 'channels.layers.InMemoryChannelLayer'),
    }
}


# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True


# Email (critical alert dispatch)

EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.console.EmailBackend')
EMAIL_HOST = os.getenv('EMAIL_HOST', 'localhost')
EMAIL_PORT = env_int('EMAIL_PORT', 25)
EMAIL_USE_TLS = env_bool('EMAIL_USE_TLS', 'false')
DEFAULT_FROM_EMAIL = os.getenv('DEFAULT_FROM_EMAIL', 'noreply@larder.local')


# Inventory

LARDER_INVENTORY = {
    'alert_thresholds': {
        'low_stock_percentage': env_float('LARDER_LOW_STOCK_PERCENTAGE', 0.2),
        'expiry_days': env_int('LARDER_EXPIRY_DAYS', 7),
        'overstock_percentage': env_float('LARDER_OVERSTOCK_PERCENTAGE', 0.5),
    },
    'forecast_settings': {
        'historical_periods': env_int('LARDER_HISTORICAL_PERIODS', 90),
        'seasonality_enabled': env_bool('LARDER_SEASONALITY_ENABLED', 'true'),
        'confidence_threshold': env_float('LARDER_CONFIDENCE_THRESHOLD', 0.7),
    },
    'performance_targets': {
        'max_response_time': env_int('LARDER_MAX_RESPONSE_TIME_MS', 500),
        'min_turnover_rate': env_float('LARDER_MIN_TURNOVER_RATE', 4),
        'max_stockout_rate': env_float('LARDER_MAX_STOCKOUT_RATE', 0.02),
    },
}

LARDER_ALERT_RECIPIENTS = env_list('LARDER_ALERT_RECIPIENTS')

LARDER_CRITICAL_ALERT_DISPATCHER = os.getenv(
    'LARDER_CRITICAL_ALERT_DISPATCHER', 'apps.alerts.dispatch.LoggingAlertDispatcher'
)


# Logging

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
    },
}
