# core/settings_test.py
"""
Settings para pytest: SQLite en memoria, Celery síncrono y archivos SRI en
un directorio temporal.
"""
import tempfile
from pathlib import Path

from core.settings import *  # noqa: F401,F403

SECRET_KEY = 'test-secret-key'
DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

MEDIA_ROOT = Path(tempfile.mkdtemp(prefix='billing-media-'))
SRI_DOCUMENTOS_ROOT = MEDIA_ROOT / 'comprobantes'

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

SRI_PAUSA_AUTORIZACIONES = 0
SRI_PAUSA_RIDES = 0

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {'console': {'class': 'logging.StreamHandler', 'level': 'ERROR'}},
    'root': {'handlers': ['console']},
}
