# core/celery.py
from __future__ import annotations

import os

from celery import Celery

# Módulo de settings de Django por defecto
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings")

app = Celery("core")

# Lee CELERY_* de settings.py (broker, serializers, CELERY_BEAT_SCHEDULE)
app.config_from_object("django.conf:settings", namespace="CELERY")

# Registra billing.tasks (verificar_autorizaciones_pendientes, generar_rides_autorizados)
app.autodiscover_tasks()
