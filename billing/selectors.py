# billing/selectors.py
# -*- coding: utf-8 -*-
"""
Consultas de comprobantes con predicados explícitos de empresa (tenant)
y borrado lógico (is_deleted).
"""
from __future__ import annotations

from typing import Any, Optional, Type

from django.db.models import Q, QuerySet

from billing.models import CreditNote, ElectronicDocument, Invoice, SriErrorLog

Estado = ElectronicDocument.Estado

MODELOS_SRI = (Invoice, CreditNote)


def as_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return None


def documentos(
    modelo: Type[ElectronicDocument],
    empresa_id: Optional[int] = None,
    incluir_eliminados: bool = False,
) -> QuerySet:
    """
    Base de toda consulta de comprobantes: opcionalmente por empresa y
    siempre excluyendo borrados lógicos salvo pedido explícito.
    """
    qs = modelo.objects.select_related("empresa", "establecimiento", "punto_emision")
    if not incluir_eliminados:
        qs = qs.filter(is_deleted=False)
    if empresa_id is not None:
        qs = qs.filter(empresa_id=empresa_id)
    return qs


def pendientes_de_autorizacion(modelo: Type[ElectronicDocument]) -> QuerySet:
    """
    Comprobantes PENDIENTE_AUTORIZACION de todas las empresas.
    """
    return documentos(modelo).filter(estado=Estado.PENDIENTE_AUTORIZACION).order_by("id")


def autorizados_sin_ride(modelo: Type[ElectronicDocument]) -> QuerySet:
    """
    Comprobantes AUTORIZADOS que aún no tienen RIDE.
    """
    return (
        documentos(modelo)
        .filter(estado=Estado.AUTORIZADO)
        .filter(Q(ride_path__isnull=True) | Q(ride_path=""))
        .order_by("id")
    )


def errores_sri(documento: ElectronicDocument) -> QuerySet:
    filtro = {"credit_note": documento} if isinstance(documento, CreditNote) else {"invoice": documento}
    return SriErrorLog.objects.filter(empresa_id=documento.empresa_id, **filtro).order_by(
        "ocurrido_en", "id"
    )
