# core/urls.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from django.conf import settings
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),

    # =========================
    # APIs (Facturación electrónica SRI)
    # =========================
    path("api/billing/", include("billing.urls", namespace="billing")),
]

# (solo DEV) servir media desde Django
if settings.DEBUG:
    from django.conf.urls.static import static

    urlpatterns += static(
        settings.MEDIA_URL,
        document_root=settings.MEDIA_ROOT,
    )
