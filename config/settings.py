import os
import dj_database_url
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Security
DEBUG = os.getenv('DEBUG', '0') == '1'
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-key-CHANGE-IN-PRODUCTION')

# Parse ALLOWED_HOSTS from env (comma-separated)
ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')

# --- 1. APPS ---
INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',

    # Local Apps
    'examcontrol',
]

# --- 2. MIDDLEWARE ---
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

# --- 3. DATABASE ---
DATABASES = {
    'default': dj_database_url.config(
        default=os.getenv('DATABASE_URL', f'sqlite:///{BASE_DIR / "db.sqlite3"}'),
        conn_max_age=600,  # Connection pooling
        conn_health_checks=True,  # Health checks
    )
}

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

# --- 4. CACHE ---
# Engine results are memoised here; use a shared backend (e.g. Redis) when
# running several workers so rate limits are shared too.
CACHES = {
    'default': {
        'BACKEND': os.getenv('CACHE_BACKEND', 'django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': os.getenv('CACHE_LOCATION', 'examcontrol'),
    }
}

# --- 5. SECURITY (Production) ---
if not DEBUG:
    SECURE_SSL_REDIRECT = os.getenv('SECURE_SSL_REDIRECT', '0') == '1'
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_HSTS_SECONDS = int(os.getenv('SECURE_HSTS_SECONDS', '0'))
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True

# --- 6. RATE LIMITING ---
RATELIMIT_ENABLE = os.getenv('RATELIMIT_ENABLE', '1') == '1'

# --- 7. EXAM CONTROL ---
EXAMCONTROL_DEFAULT_MIN_PASSING_PERCENT = int(os.getenv('EXAMCONTROL_MIN_PASSING_PERCENT', '50'))
EXAMCONTROL_DEFAULT_MIN_EXAM_PASSING_PERCENT = int(os.getenv('EXAMCONTROL_MIN_EXAM_PASSING_PERCENT', '30'))
EXAMCONTROL_RESULT_CACHE_TIMEOUT = int(os.getenv('EXAMCONTROL_RESULT_CACHE_TIMEOUT', '300'))
EXAMCONTROL_API_RATE = os.getenv('EXAMCONTROL_API_RATE', '120/m')

# --- 8. LOGGING ---
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'examcontrol': {
            'handlers': ['console'],
            'level': os.getenv('EXAMCONTROL_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}

# --- 9. INTERNATIONALIZATION ---
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# --- 10. DEFAULT PRIMARY KEY ---
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
