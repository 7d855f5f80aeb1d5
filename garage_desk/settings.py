from pathlib import Path
import sys
import os
from decimal import Decimal
from dotenv import load_dotenv
import dj_database_url

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Garage apps live in garage_core so they import as top-level apps.
CORE_DIR = BASE_DIR / "garage_core"
if CORE_DIR.exists():
    sys.path.insert(0, str(CORE_DIR))

# Load environment variables from .env (default) or .env.example (fallback)
_env_file = os.getenv("ENV_FILE")
if _env_file:
    # Explicit env file first (e.g. for CI), then .env.example as a defaults layer.
    load_dotenv(_env_file)
    load_dotenv(BASE_DIR / '.env.example', override=False)
else:
    load_dotenv(BASE_DIR / '.env')
    load_dotenv(BASE_DIR / '.env.example', override=False)


def _env_truthy(value, default=False):
    """Return True when the provided environment value represents truthy."""

    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_strip(value):
    return value.strip() if value else ''


def _env_decimal(name, default):
    try:
        return Decimal(str(os.getenv(name, default)).strip())
    except Exception:
        return Decimal(str(default))


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-local-development-key')

DEBUG = _env_truthy(os.getenv('DEBUG'), True)

_allowed_hosts_env = os.getenv('ALLOWED_HOSTS')
ALLOWED_HOSTS = (
    [h.strip() for h in _allowed_hosts_env.split(',') if h.strip()]
    if _allowed_hosts_env
    else ['localhost', '127.0.0.1', 'testserver']
)

_csrf_env = os.getenv('CSRF_TRUSTED_ORIGINS', '')
if _csrf_env:
    CSRF_TRUSTED_ORIGINS = [o.strip() for o in _csrf_env.split(',') if o.strip()]
else:
    CSRF_TRUSTED_ORIGINS = [
        'http://localhost:8000',
        'http://127.0.0.1:8000',
    ]

# Garage identity printed on invoices and notification e-mails
GARAGE_NAME = _env_strip(os.getenv('GARAGE_NAME', 'City Auto Care')) or 'City Auto Care'
GARAGE_GSTIN = _env_strip(os.getenv('GARAGE_GSTIN', ''))
GARAGE_ADDRESS = _env_strip(os.getenv('GARAGE_ADDRESS', '')) or 'Main Road, Bengaluru'
GARAGE_PHONE = _env_strip(os.getenv('GARAGE_PHONE', ''))

# Billing defaults
CURRENCY = (_env_strip(os.getenv('CURRENCY', 'INR')) or 'INR').upper()
DEFAULT_TAX_RATE = _env_decimal('DEFAULT_TAX_RATE', '18')
try:
    INVOICE_DUE_DAYS = int(os.getenv('INVOICE_DUE_DAYS', '7'))
except (TypeError, ValueError):
    INVOICE_DUE_DAYS = 7
PAYMENT_BALANCE_TOLERANCE = _env_decimal('PAYMENT_BALANCE_TOLERANCE', '0.01')
INVOICE_TERMS = _env_strip(os.getenv(
    'INVOICE_TERMS',
    'Payment due within 7 days of invoice date. Goods once fitted will not be taken back.',
))

# Razorpay payment gateway
RAZORPAY_KEY_ID = _env_strip(os.getenv('RAZORPAY_KEY_ID', ''))
RAZORPAY_KEY_SECRET = _env_strip(os.getenv('RAZORPAY_KEY_SECRET', ''))
RAZORPAY_API_BASE_URL = _env_strip(os.getenv('RAZORPAY_API_BASE_URL', ''))

# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'django.contrib.humanize',
    'corsheaders',
    'rest_framework',
    'rest_framework.authtoken',
    'workshop',
    'api',
]

MIDDLEWARE = [
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

CORS_ORIGIN_ALLOW_ALL = _env_truthy(os.getenv('CORS_ORIGIN_ALLOW_ALL'), True)
CORS_ALLOW_CREDENTIALS = True

ROOT_URLCONF = 'garage_desk.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [os.path.join(BASE_DIR, 'templates')],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'garage_desk.wsgi.application'

# Database
# https://docs.djangoproject.com/en/5.0/ref/settings/#databases

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

_force_sqlite = _env_truthy(os.getenv('FORCE_SQLITE'), False)

# Enable DATABASE_URL parsing when provided; fallback stays SQLite
_raw_db_url = os.getenv('DATABASE_URL', '')
_clean_db_url = _raw_db_url.strip().strip('"').strip("'")
if (not _force_sqlite) and _clean_db_url:
    DATABASES['default'] = dj_database_url.parse(
        _clean_db_url,
        conn_max_age=600,
        ssl_require=_env_truthy(os.getenv('DB_SSL_REQUIRE'), False),
    )

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
        'OPTIONS': {
            'min_length': 8,
        }
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.TokenAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_PAGINATION_CLASS': 'api.pagination.PageLimitPagination',
    'PAGE_SIZE': 20,
    'EXCEPTION_HANDLER': 'api.exceptions.envelope_exception_handler',
    'COERCE_DECIMAL_TO_STRING': True,
}

LANGUAGE_CODE = 'en-us'

TIME_ZONE = os.getenv('TIME_ZONE', 'Asia/Kolkata')

USE_I18N = True

USE_TZ = True

STATIC_URL = '/static/'
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

if not DEBUG:
    STORAGES['staticfiles'] = {'BACKEND': 'whitenoise.storage.CompressedStaticFilesStorage'}
    WHITENOISE_MANIFEST_STRICT = False
    SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_SSL_REDIRECT = _env_truthy(os.getenv('SECURE_SSL_REDIRECT'), False)

MEDIA_URL = '/media/'
MEDIA_ROOT = os.path.join(BASE_DIR, 'media')

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

EMAIL_BACKEND = os.getenv('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = os.getenv('EMAIL_HOST', 'smtp.gmail.com')
EMAIL_USE_TLS = _env_truthy(os.getenv('EMAIL_USE_TLS'), True)
try:
    EMAIL_PORT = int(os.getenv('EMAIL_PORT', '587'))
except (TypeError, ValueError):
    EMAIL_PORT = 587
EMAIL_HOST_USER = os.getenv('EMAIL_HOST_USER', '')
EMAIL_HOST_PASSWORD = os.getenv('EMAIL_HOST_PASSWORD', '')
DEFAULT_FROM_EMAIL = os.getenv('DEFAULT_FROM_EMAIL', 'service@garage.local')
SUPPORT_EMAIL = os.getenv('SUPPORT_EMAIL', DEFAULT_FROM_EMAIL)

SITE_URL = _env_strip(os.getenv("SITE_URL", "http://localhost:8000")) or "http://localhost:8000"

LOG_TO_FILE = _env_truthy(os.getenv('LOG_TO_FILE'), False)
LOG_LEVEL = (os.getenv('LOG_LEVEL', 'INFO') or 'INFO').upper()
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
        **({
            'file': {
                'level': 'INFO',
                'class': 'logging.FileHandler',
                'filename': os.path.join(BASE_DIR, 'logs', 'workshop.log'),
                'formatter': 'simple',
            }
        } if LOG_TO_FILE else {})
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'workshop': {
            'handlers': ['file'] if LOG_TO_FILE else ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
