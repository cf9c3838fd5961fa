import os
from pathlib import Path
from dotenv import load_dotenv # Cargador de secretos

BASE_DIR = Path(__file__).resolve().parent.parent

# --- CARGAR VARIABLES DE ENTORNO ---
# Carga el archivo .env desde la raíz del proyecto
load_dotenv(BASE_DIR / '.env')

# --- SEGURIDAD ---
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-insecure-key')
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
ALLOWED_HOSTS = [h for h in os.getenv('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

# -------------------------------------------------
# CSRF / CORS
# -------------------------------------------------
TRUSTED_URLS = [u for u in os.getenv('TRUSTED_ORIGINS', '').split(',') if u]

CSRF_TRUSTED_ORIGINS = TRUSTED_URLS
CORS_ALLOWED_ORIGINS = TRUSTED_URLS
CORS_ALLOW_CREDENTIALS = True

CSRF_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = not DEBUG

# -------------------------------------------------
# Apps Instaladas
# -------------------------------------------------
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    'rest_framework',
    'django_filters',
    'corsheaders',

    'billing.apps.BillingConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'core.urls'
WSGI_APPLICATION = 'core.wsgi.application'

LANGUAGE_CODE = 'es-ec'
TIME_ZONE = 'America/Guayaquil'
USE_I18N = True
USE_TZ = True

# --- Base de datos ---
# DATABASE_ENGINE=sqlite permite levantar el proyecto sin MySQL (desarrollo)
if os.getenv('DATABASE_ENGINE', 'mysql').lower() == 'sqlite':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.mysql',
            'NAME': os.getenv('DATABASE_NAME'),
            'USER': os.getenv('DATABASE_USER'),
            'PASSWORD': os.getenv('DATABASE_PASSWORD'),
            'HOST': os.getenv('DATABASE_HOST', 'localhost'),
            'PORT': os.getenv('DATABASE_PORT', '3306'),
            'OPTIONS': {
                'charset': 'utf8mb4',
                'init_command': "SET sql_mode='STRICT_TRANS_TABLES'",
            },
        }
    }

# --- DRF ---
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_PAGINATION_CLASS": "billing.pagination.BillingPagination",
    "PAGE_SIZE": 25,
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
}

# --- Templates ---
TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
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

# --- Archivos estáticos/medios ---
STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'
STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'whitenoise.storage.CompressedManifestStaticFilesStorage'},
}

MEDIA_URL = '/media/'
MEDIA_ROOT = BASE_DIR / 'public' / 'media'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# -------------------------------------------------
# SRI (facturación electrónica)
# -------------------------------------------------
# Carpeta de XML / XML firmado / RIDE; por defecto MEDIA_ROOT/comprobantes
SRI_DOCUMENTOS_ROOT = os.getenv('SRI_DOCUMENTOS_ROOT') or None

SRI_TEST_RECEPCION_WSDL = os.getenv(
    'SRI_TEST_RECEPCION_WSDL',
    'https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl',
)
SRI_TEST_AUTORIZACION_WSDL = os.getenv(
    'SRI_TEST_AUTORIZACION_WSDL',
    'https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl',
)
SRI_PROD_RECEPCION_WSDL = os.getenv(
    'SRI_PROD_RECEPCION_WSDL',
    'https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl',
)
SRI_PROD_AUTORIZACION_WSDL = os.getenv(
    'SRI_PROD_AUTORIZACION_WSDL',
    'https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl',
)

SRI_SSL_VERIFY = os.getenv('SRI_SSL_VERIFY', 'True').lower() == 'true'
SRI_REQUEST_TIMEOUT = int(os.getenv('SRI_REQUEST_TIMEOUT', 15))
SRI_RETRY_MAX = int(os.getenv('SRI_RETRY_MAX', 3))
SRI_RETRY_BACKOFF = float(os.getenv('SRI_RETRY_BACKOFF', 2))

SRI_VERSION_FACTURA = '1.1.0'
SRI_VERSION_NOTA_CREDITO = '1.1.0'

SRI_DIAS_AVISO_CERTIFICADO = int(os.getenv('SRI_DIAS_AVISO_CERTIFICADO', 30))

# Errores del cliente que no implican rechazo del comprobante
SRI_CODIGOS_TRANSITORIOS = ('INVALID_RESPONSE', 'PARSE_ERROR')

# Tareas periódicas: intervalo (segundos) y pausa entre comprobantes (segundos)
SRI_INTERVALO_AUTORIZACIONES = int(os.getenv('SRI_INTERVALO_AUTORIZACIONES', 30))
SRI_INTERVALO_RIDES = int(os.getenv('SRI_INTERVALO_RIDES', 60))
SRI_PAUSA_AUTORIZACIONES = 0.5
SRI_PAUSA_RIDES = 0.2

# -------------------------------------------------
# Celery
# -------------------------------------------------
CELERY_BROKER_URL = os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.getenv('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

CELERY_BEAT_SCHEDULE = {
    'sri-verificar-autorizaciones-pendientes': {
        'task': 'billing.tasks.verificar_autorizaciones_pendientes',
        'schedule': SRI_INTERVALO_AUTORIZACIONES,
    },
    'sri-generar-rides-autorizados': {
        'task': 'billing.tasks.generar_rides_autorizados',
        'schedule': SRI_INTERVALO_RIDES,
    },
}

# --- LOGGING ---
LOG_DIR = BASE_DIR / 'logs'
LOG_DIR.mkdir(exist_ok=True)

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
        'file': {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_DIR / 'django.log',
            'maxBytes': 1024 * 1024 * 5,  # 5MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['console', 'file'],
            'level': 'INFO',
            'propagate': True,
        },
        'billing.sri': {
            'handlers': ['console', 'file'],
            'level': os.getenv('SRI_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'billing.ride': {
            'handlers': ['console', 'file'],
            'level': 'INFO',
            'propagate': False,
        },
        'billing.tasks': {
            'handlers': ['console', 'file'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
