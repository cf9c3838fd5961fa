# billing/services/documentos.py
# -*- coding: utf-8 -*-
"""
Creación de comprobantes (factura / nota de crédito) en estado BORRADOR.

El secuencial se reserva en la misma transacción que crea el comprobante,
bloqueando el punto de emisión (ver PuntoEmision.siguiente_secuencial).
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Tuple

from django.db import transaction

from billing.models import (
    CreditNote,
    CreditNoteLine,
    ElectronicDocument,
    Empresa,
    Invoice,
    InvoiceLine,
    PuntoEmision,
)
from billing.validators import (
    TIPO_IDENT_CEDULA,
    TIPO_IDENT_RUC,
    mensaje_error_cedula,
    mensaje_error_ruc,
)

logger = logging.getLogger("billing.sri")

CENTAVO = Decimal("0.01")


def _q2(valor: Decimal) -> Decimal:
    return valor.quantize(CENTAVO, rounding=ROUND_HALF_UP)


def validar_comprador(tipo: str, identificacion: Any) -> Dict[str, str]:
    """
    Errores por campo de la identificación del comprador ({} si es válida).
    """
    if tipo == TIPO_IDENT_RUC:
        mensaje = mensaje_error_ruc(identificacion)
    elif tipo == TIPO_IDENT_CEDULA:
        mensaje = mensaje_error_cedula(identificacion)
    elif not isinstance(identificacion, str) or not identificacion.strip():
        mensaje = "La identificación del comprador es obligatoria."
    else:
        mensaje = ""
    return {"identificacion_comprador": mensaje} if mensaje else {}


def calcular_linea(datos: Dict[str, Any]) -> Dict[str, Any]:
    """
    Completa subtotal e iva_valor de una línea a partir de cantidad, precio,
    descuento y tarifa.
    """
    linea = dict(datos)
    cantidad = Decimal(str(linea["cantidad"]))
    precio = Decimal(str(linea["precio_unitario"]))
    descuento = Decimal(str(linea.get("descuento") or "0"))
    tarifa = Decimal(str(linea.get("iva_tarifa", "15.00")))

    subtotal = _q2(cantidad * precio - descuento)
    if subtotal < 0:
        raise ValueError("El descuento no puede superar el valor de la línea.")

    linea["descuento"] = _q2(descuento)
    linea["iva_tarifa"] = tarifa
    linea["subtotal"] = subtotal
    linea["iva_valor"] = _q2(subtotal * tarifa / Decimal("100"))
    return linea


def calcular_totales(lineas: List[Dict[str, Any]]) -> Tuple[Decimal, Decimal, Decimal]:
    subtotal = sum((linea["subtotal"] for linea in lineas), Decimal("0.00"))
    iva = sum((linea["iva_valor"] for linea in lineas), Decimal("0.00"))
    return _q2(subtotal), _q2(iva), _q2(subtotal + iva)


def _preparar(
    empresa: Empresa,
    datos: Dict[str, Any],
) -> Tuple[Dict[str, Any], List[Dict[str, Any]], PuntoEmision]:
    datos = dict(datos)
    lineas = [calcular_linea(linea) for linea in datos.pop("lines", [])]
    if not lineas:
        raise ValueError("El comprobante debe tener al menos una línea.")

    punto: PuntoEmision = datos.pop("punto_emision")
    establecimiento = punto.establecimiento
    if establecimiento.empresa_id != empresa.pk:
        raise ValueError("El punto de emisión no pertenece a la empresa indicada.")

    errores = validar_comprador(
        datos.get("tipo_identificacion_comprador", ""),
        datos.get("identificacion_comprador"),
    )
    if errores:
        raise ValueError(errores["identificacion_comprador"])

    subtotal, iva, total = calcular_totales(lineas)
    datos.update(
        empresa=empresa,
        establecimiento=establecimiento,
        punto_emision=punto,
        subtotal=subtotal,
        iva=iva,
        total=total,
        ambiente=empresa.ambiente_efectivo,
        estado=ElectronicDocument.Estado.BORRADOR,
    )
    return datos, lineas, punto


def crear_factura(empresa: Empresa, datos: Dict[str, Any]) -> Invoice:
    """
    Crea una factura BORRADOR con sus líneas y el siguiente secuencial del punto.
    Lanza ValueError si los datos no son válidos.
    """
    datos, lineas, punto = _preparar(empresa, datos)

    with transaction.atomic():
        datos["secuencial"] = punto.siguiente_secuencial(PuntoEmision.TIPO_FACTURA)
        invoice = Invoice.objects.create(**datos)
        InvoiceLine.objects.bulk_create([InvoiceLine(invoice=invoice, **linea) for linea in lineas])

    logger.info(
        "Factura %s creada (empresa=%s, número=%s, total=%s)",
        invoice.pk,
        empresa.ruc,
        invoice.numero,
        invoice.total,
    )
    return invoice


def crear_nota_credito(empresa: Empresa, datos: Dict[str, Any]) -> CreditNote:
    """
    Crea una nota de crédito BORRADOR sobre una factura AUTORIZADA de la misma
    empresa. Los datos del comprador y del documento sustento se copian de la
    factura cuando no vienen en `datos`.
    """
    datos = dict(datos)
    invoice: Invoice = datos["invoice"]

    if invoice.empresa_id != empresa.pk or invoice.is_deleted:
        raise ValueError("La factura modificada no pertenece a la empresa.")
    if invoice.estado != ElectronicDocument.Estado.AUTORIZADO:
        raise ValueError("Solo se puede emitir nota de crédito sobre una factura AUTORIZADA.")

    for campo in (
        "tipo_identificacion_comprador",
        "identificacion_comprador",
        "razon_social_comprador",
        "direccion_comprador",
        "email_comprador",
    ):
        datos.setdefault(campo, getattr(invoice, campo))
    datos.setdefault("cod_doc_modificado", Invoice.COD_DOC)
    datos.setdefault("num_doc_modificado", invoice.numero)
    datos.setdefault("fecha_emision_doc_sustento", invoice.fecha_emision)

    datos, lineas, punto = _preparar(empresa, datos)
    datos["valor_modificacion"] = datos["total"]

    with transaction.atomic():
        emitido = sum(
            (
                nc.total
                for nc in CreditNote.objects.select_for_update()
                .filter(invoice=invoice, is_deleted=False)
                .exclude(estado=ElectronicDocument.Estado.RECHAZADO)
            ),
            Decimal("0.00"),
        )
        if emitido + datos["total"] > invoice.total:
            raise ValueError(
                f"El valor de la nota de crédito ({datos['total']}) excede el saldo "
                f"disponible de la factura ({invoice.total - emitido})."
            )

        datos["secuencial"] = punto.siguiente_secuencial(PuntoEmision.TIPO_NOTA_CREDITO)
        credit_note = CreditNote.objects.create(**datos)
        CreditNoteLine.objects.bulk_create(
            [CreditNoteLine(credit_note=credit_note, **linea) for linea in lineas]
        )

    logger.info(
        "Nota de crédito %s creada sobre factura %s (total=%s)",
        credit_note.pk,
        invoice.pk,
        credit_note.total,
    )
    return credit_note
