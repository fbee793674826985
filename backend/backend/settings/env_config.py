"""
Runtime environment detection and typed access to environment variables.

``DJANGO_ENV`` selects development (default) or production. Variables may be
seeded from a ``.env`` file in the ``backend/`` directory; values already in
the process environment take precedence.
"""

import os
from pathlib import Path
from django.core.exceptions import ImproperlyConfigured

BACKEND_DIR = Path(__file__).resolve().parents[2]

# Must be present before a production process starts
REQUIRED_PRODUCTION_VARS = (
    'SECRET_KEY',
    'ALLOWED_HOSTS',
    'CORS_ALLOWED_ORIGINS',
    'POSTGRES_DB',
    'POSTGRES_USER',
    'POSTGRES_PASSWORD',
    'POSTGRES_HOST',
)

# Without these the carrier falls back to manual pickups and gateway refunds fail
INTEGRATION_VARS = (
    'SHIPROCKET_EMAIL',
    'SHIPROCKET_PASSWORD',
    'SHIPROCKET_WEBHOOK_SECRET',
    'RAZORPAY_KEY_ID',
    'RAZORPAY_KEY_SECRET',
)


def load_env_file(path: Path = BACKEND_DIR / '.env'):
    """Copy ``KEY=value`` lines from ``path`` into ``os.environ``."""
    if not path.exists():
        return
    with open(path, 'r', encoding='utf-8') as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = (part.strip() for part in line.split('=', 1))
            if key and not os.getenv(key):
                os.environ[key] = value.strip('"').strip("'")


load_env_file()


class EnvironmentConfig:
    """
    Environment lookups used by the settings modules.

    Typed getters raise ``ImproperlyConfigured`` on malformed values so a bad
    deployment fails at import time rather than on the first request.
    """

    ENV_DEVELOPMENT = 'development'
    ENV_PRODUCTION = 'production'

    TRUE_VALUES = ('true', '1', 'yes', 'on')

    DEV_CORS_ORIGINS = [
        'http://localhost:3000',
        'http://localhost:8000',
        'http://127.0.0.1:3000',
        'http://127.0.0.1:8000',
    ]

    @staticmethod
    def get_env(key: str = None, default: str = None) -> str:
        """Value of ``key``, or the current environment name when ``key`` is None."""
        if key is None:
            return os.getenv('DJANGO_ENV', EnvironmentConfig.ENV_DEVELOPMENT)
        return os.getenv(key, default)

    @staticmethod
    def _raw(key: str):
        value = os.getenv(key)
        if value is None or not value.strip():
            return None
        return value.strip()

    @staticmethod
    def get_bool(key: str, default: bool = False) -> bool:
        value = EnvironmentConfig._raw(key)
        return default if value is None else value.lower() in EnvironmentConfig.TRUE_VALUES

    @staticmethod
    def get_int(key: str, default: int) -> int:
        value = EnvironmentConfig._raw(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ImproperlyConfigured(f'{key} must be an integer, got {value!r}')

    @staticmethod
    def get_float(key: str, default: float) -> float:
        value = EnvironmentConfig._raw(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ImproperlyConfigured(f'{key} must be a number, got {value!r}')

    @staticmethod
    def is_production() -> bool:
        return EnvironmentConfig.get_env() == EnvironmentConfig.ENV_PRODUCTION

    @staticmethod
    def is_development() -> bool:
        return EnvironmentConfig.get_env() == EnvironmentConfig.ENV_DEVELOPMENT

    @staticmethod
    def _require(key: str) -> str:
        value = EnvironmentConfig._raw(key)
        if value is None:
            raise ImproperlyConfigured(f'{key} environment variable must be set in production')
        return value

    @staticmethod
    def _csv(key: str) -> list:
        return [item.strip() for item in EnvironmentConfig._require(key).split(',') if item.strip()]

    @staticmethod
    def get_secret_key() -> str:
        if EnvironmentConfig.is_production():
            return EnvironmentConfig._require('SECRET_KEY')
        return os.getenv('SECRET_KEY', 'django-insecure-dev-key-change-in-production')

    @staticmethod
    def get_allowed_hosts() -> list:
        return EnvironmentConfig._csv('ALLOWED_HOSTS') if EnvironmentConfig.is_production() else ['*']

    @staticmethod
    def get_cors_allowed_origins() -> list:
        if EnvironmentConfig.is_production():
            return EnvironmentConfig._csv('CORS_ALLOWED_ORIGINS')
        return list(EnvironmentConfig.DEV_CORS_ORIGINS)

    @staticmethod
    def get_debug() -> bool:
        """Never on in production; on by default elsewhere."""
        if EnvironmentConfig.is_production():
            return False
        return EnvironmentConfig.get_bool('DEBUG', True)

    @staticmethod
    def get_database_config() -> dict:
        """
        PostgreSQL (psycopg2) in production, a local SQLite file otherwise.

        Row locks taken by the returns workflow need PostgreSQL; on SQLite the
        conditional status update is what rejects a racing writer.
        """
        if not EnvironmentConfig.is_production():
            return {
                'ENGINE': 'django.db.backends.sqlite3',
                'NAME': BACKEND_DIR / 'db.sqlite3',
            }
        return {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.getenv('POSTGRES_DB', ''),
            'USER': os.getenv('POSTGRES_USER', ''),
            'PASSWORD': os.getenv('POSTGRES_PASSWORD', ''),
            'HOST': os.getenv('POSTGRES_HOST', 'localhost'),
            'PORT': os.getenv('POSTGRES_PORT', '5432'),
            'ATOMIC_REQUESTS': False,
        }

    @staticmethod
    def validate_production_config():
        """
        Raises:
            ImproperlyConfigured: A required production variable is missing
        """
        if not EnvironmentConfig.is_production():
            return
        missing = [key for key in REQUIRED_PRODUCTION_VARS if EnvironmentConfig._raw(key) is None]
        if missing:
            raise ImproperlyConfigured(
                f'Missing required environment variables in production: {", ".join(missing)}'
            )

    @staticmethod
    def missing_integration_config() -> list:
        return [key for key in INTEGRATION_VARS if EnvironmentConfig._raw(key) is None]
