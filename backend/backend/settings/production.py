from .base import *  # noqa
import logging
from .env_config import EnvironmentConfig

# Production environment settings
DEBUG = False

# Validate production configuration on startup
EnvironmentConfig.validate_production_config()

ALLOWED_HOSTS = EnvironmentConfig.get_allowed_hosts()

DATABASES = {
    'default': EnvironmentConfig.get_database_config()
}

# Security settings for production
SECURE_SSL_REDIRECT = EnvironmentConfig.get_bool('SECURE_SSL_REDIRECT', True)
SECURE_HSTS_SECONDS = EnvironmentConfig.get_int('SECURE_HSTS_SECONDS', 31536000)  # 1 year
SECURE_HSTS_INCLUDE_SUBDOMAINS = EnvironmentConfig.get_bool('SECURE_HSTS_INCLUDE_SUBDOMAINS', True)
SECURE_HSTS_PRELOAD = EnvironmentConfig.get_bool('SECURE_HSTS_PRELOAD', True)
SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True

# CORS settings for production
CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = EnvironmentConfig.get_cors_allowed_origins()
CORS_ALLOW_CREDENTIALS = True

# Carrier and gateway credentials are expected once live
for _key in EnvironmentConfig.missing_integration_config():
    logging.getLogger(__name__).warning(f'{_key} is not configured; integration calls will fail')
