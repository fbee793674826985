from pathlib import Path
from .env_config import EnvironmentConfig

BASE_DIR = Path(__file__).resolve().parents[1]

# Environment-aware configuration
SECRET_KEY = EnvironmentConfig.get_secret_key()
DEBUG = EnvironmentConfig.get_debug()
ALLOWED_HOSTS = EnvironmentConfig.get_allowed_hosts()

INSTALLED_APPS = [
    'simpleui',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'rest_framework_simplejwt',
    'drf_spectacular',
    'corsheaders',
    'django_filters',
    'users',
    'orders',
    'integrations',
    'returns',
]

AUTH_USER_MODEL = 'users.User'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'DEFAULT_FILTER_BACKENDS': [
        'django_filters.rest_framework.DjangoFilterBackend',
    ],
    'DEFAULT_THROTTLE_CLASSES': [
        'rest_framework.throttling.AnonRateThrottle',
        'rest_framework.throttling.UserRateThrottle',
    ] if EnvironmentConfig.is_production() else [],
    'DEFAULT_THROTTLE_RATES': {
        'anon': '20/minute',
        'user': '100/minute',
        'returns_admin': '60/minute',
    },
    'DEFAULT_PAGINATION_CLASS': 'common.pagination.StandardResultsSetPagination',
    'PAGE_SIZE': 20,
    'EXCEPTION_HANDLER': 'common.exceptions.custom_exception_handler',
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}

# drf-spectacular configuration
SPECTACULAR_SETTINGS = {
    'TITLE': 'Jewellery Store Returns API',
    'DESCRIPTION': 'Return requests, reverse pickups and refund settlement',
    'VERSION': '1.0.0',
    'SERVE_PERMISSIONS': ['rest_framework.permissions.AllowAny'],
    'SERVE_AUTHENTICATION': None,
    'SCHEMA_PATH_PREFIX': r'/api/v1',
    'AUTHENTICATION_FLOWS': {
        'JWT': {
            'type': 'http',
            'scheme': 'bearer',
            'bearerFormat': 'JWT',
        }
    },
    'SECURITY': [
        {
            'JWT': []
        }
    ],
    'TAGS': [
        {
            'name': 'Returns',
            'description': 'Customer return requests and admin return workflow',
        },
        {
            'name': 'Auth',
            'description': 'JWT token issuing',
        },
    ],
    'POSTPROCESSING_HOOKS': [
        'drf_spectacular.hooks.postprocess_schema_enums',
    ],
}

from datetime import timedelta
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(days=7),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=30),
}

# CORS configuration (environment-specific settings in development.py and production.py)
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_HEADERS = [
    'accept',
    'accept-encoding',
    'authorization',
    'content-type',
    'dnt',
    'origin',
    'user-agent',
    'x-csrftoken',
    'x-requested-with',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'common.exceptions.ExceptionLoggingMiddleware',
]

ROOT_URLCONF = 'backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
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

WSGI_APPLICATION = 'backend.wsgi.application'

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'Asia/Kolkata'

USE_I18N = True

USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Logging configuration
from common.logging_config import get_logging_config
LOGGING = get_logging_config()

# ============================================================================
# Return policy
# ============================================================================
RETURN_POLICY_DEFAULT_DAYS = EnvironmentConfig.get_int('RETURN_POLICY_DEFAULT_DAYS', 10)
# Per-category overrides: {'category': {'days': int, 'allowed_reasons': [...]}}
RETURN_CATEGORY_POLICIES = {
    'jewellery': {
        'days': 10,
        'allowed_reasons': ['defective_product', 'wrong_item_delivered', 'not_as_described', 'size_fitting_issue'],
    },
    'electronics': {
        'days': 7,
        'allowed_reasons': ['defective_product', 'wrong_item_delivered', 'not_as_described'],
    },
    'clothing': {
        'days': 15,
        'allowed_reasons': ['size_fitting_issue', 'not_as_described', 'defective_product', 'wrong_item_delivered'],
    },
}
RETURN_MIN_ORDER_AMOUNT = EnvironmentConfig.get_env('RETURN_MIN_ORDER_AMOUNT', '100')
RETURN_PICKUP_FALLBACK_DAYS = EnvironmentConfig.get_int('RETURN_PICKUP_FALLBACK_DAYS', 2)
RETURN_PICKUP_FALLBACK_TIME_SLOT = EnvironmentConfig.get_env('RETURN_PICKUP_FALLBACK_TIME_SLOT', '10:00 AM - 6:00 PM')
# Admin-created returns skip eligibility but still respect this window
RETURN_MANUAL_ALLOWED_DAYS = EnvironmentConfig.get_int('RETURN_MANUAL_ALLOWED_DAYS', 30)

# Warehouse that receives reverse pickups
RETURN_WAREHOUSE = {
    'address': EnvironmentConfig.get_env('WAREHOUSE_ADDRESS', 'Rajpura, Punjab'),
    'city': EnvironmentConfig.get_env('WAREHOUSE_CITY', 'Rajpura'),
    'state': EnvironmentConfig.get_env('WAREHOUSE_STATE', 'Punjab'),
    'pincode': EnvironmentConfig.get_env('WAREHOUSE_PINCODE', '140401'),
    'phone': EnvironmentConfig.get_env('WAREHOUSE_PHONE', ''),
    'email': EnvironmentConfig.get_env('WAREHOUSE_EMAIL', 'returns@example.com'),
}

# ============================================================================
# Shiprocket (reverse pickup carrier)
# ============================================================================
SHIPROCKET_BASE_URL = EnvironmentConfig.get_env('SHIPROCKET_BASE_URL', 'https://apiv2.shiprocket.in/v1/external')
SHIPROCKET_EMAIL = EnvironmentConfig.get_env('SHIPROCKET_EMAIL', '')
SHIPROCKET_PASSWORD = EnvironmentConfig.get_env('SHIPROCKET_PASSWORD', '')
SHIPROCKET_TIMEOUT_SECONDS = EnvironmentConfig.get_float('SHIPROCKET_TIMEOUT_SECONDS', 10.0)
# Token expected in the anx-api-key header of tracking webhooks
SHIPROCKET_WEBHOOK_SECRET = EnvironmentConfig.get_env('SHIPROCKET_WEBHOOK_SECRET', '')

# ============================================================================
# Razorpay (payment gateway refunds)
# ============================================================================
RAZORPAY_BASE_URL = EnvironmentConfig.get_env('RAZORPAY_BASE_URL', 'https://api.razorpay.com/v1')
RAZORPAY_KEY_ID = EnvironmentConfig.get_env('RAZORPAY_KEY_ID', '')
RAZORPAY_KEY_SECRET = EnvironmentConfig.get_env('RAZORPAY_KEY_SECRET', '')
RAZORPAY_TIMEOUT_SECONDS = EnvironmentConfig.get_float('RAZORPAY_TIMEOUT_SECONDS', 15.0)
