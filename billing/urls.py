# billing/urls.py
# -*- coding: utf-8 -*-
"""
Rutas REST del módulo de facturación electrónica.

En el urls.py del proyecto:
    path("api/billing/", include("billing.urls", namespace="billing"))
"""

from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from billing.viewsets import (
    CreditNoteViewSet,
    EmpresaViewSet,
    EstablecimientoViewSet,
    InvoiceViewSet,
    PuntoEmisionViewSet,
)

app_name = "billing"

router = DefaultRouter()

# =========================
# Configuración SRI / Empresa
# =========================
router.register(r"empresas", EmpresaViewSet, basename="empresa")
router.register(r"establecimientos", EstablecimientoViewSet, basename="establecimiento")
router.register(r"puntos-emision", PuntoEmisionViewSet, basename="punto-emision")

# =========================
# Comprobantes electrónicos
# =========================
router.register(r"invoices", InvoiceViewSet, basename="invoice")
router.register(r"credit-notes", CreditNoteViewSet, basename="credit-note")

urlpatterns = [
    path("", include(router.urls)),
]
