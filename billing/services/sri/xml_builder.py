# billing/services/sri/xml_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from django.conf import settings
from lxml import etree

from billing.models import CreditNote, ElectronicDocument, Invoice

logger = logging.getLogger("billing.sri")

SRI_VERSION_FACTURA = getattr(settings, "SRI_VERSION_FACTURA", "1.1.0")
SRI_VERSION_NOTA_CREDITO = getattr(settings, "SRI_VERSION_NOTA_CREDITO", "1.1.0")

IVA_CODIGO = "2"


def _format_decimal(value: Decimal | float | int | None, places: int = 2) -> str:
    """
    Montos con 2 decimales, cantidades/precios con 6 (formato SRI). None -> 0.
    """
    if value is None:
        value = Decimal("0")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    quantum = Decimal(1).scaleb(-places)
    return f"{value.quantize(quantum):.{places}f}"


def _format_fecha(fecha: date | datetime) -> str:
    if isinstance(fecha, datetime):
        fecha = fecha.date()
    return fecha.strftime("%d/%m/%Y")


def _sub(parent: etree._Element, tag: str, text: str | None) -> etree._Element:
    node = etree.SubElement(parent, tag)
    node.text = text
    return node


def _agrupar_iva(lines: Iterable) -> "OrderedDict[Tuple[str, Decimal], Dict[str, Decimal]]":
    """
    Suma base imponible y valor de IVA por (codigo_porcentaje, tarifa).
    """
    grupos: "OrderedDict[Tuple[str, Decimal], Dict[str, Decimal]]" = OrderedDict()
    for line in lines:
        key = (line.iva_codigo_porcentaje, line.iva_tarifa)
        grupo = grupos.setdefault(key, {"base": Decimal("0.00"), "valor": Decimal("0.00")})
        grupo["base"] += line.subtotal or Decimal("0.00")
        grupo["valor"] += line.iva_valor or Decimal("0.00")
    return grupos


# =========================
# Nodos comunes
# =========================


def _info_tributaria(documento: ElectronicDocument) -> etree._Element:
    empresa = documento.empresa
    if not documento.clave_acceso:
        raise ValueError(f"El comprobante {documento.pk} no tiene clave de acceso.")

    info = etree.Element("infoTributaria")
    _sub(info, "ambiente", documento.ambiente)
    _sub(info, "tipoEmision", "1")
    _sub(info, "razonSocial", empresa.razon_social)
    _sub(info, "nombreComercial", empresa.nombre_comercial or empresa.razon_social)
    _sub(info, "ruc", empresa.ruc)
    _sub(info, "claveAcceso", documento.clave_acceso)
    _sub(info, "codDoc", documento.COD_DOC)
    _sub(info, "estab", documento.establecimiento.codigo.zfill(3))
    _sub(info, "ptoEmi", documento.punto_emision.codigo.zfill(3))
    _sub(info, "secuencial", f"{int(documento.secuencial):09d}")
    _sub(info, "dirMatriz", empresa.direccion_matriz or "")
    return info


def _datos_emisor_comprador(info: etree._Element, documento: ElectronicDocument) -> None:
    empresa = documento.empresa
    _sub(info, "fechaEmision", _format_fecha(documento.fecha_emision))
    _sub(
        info,
        "dirEstablecimiento",
        documento.establecimiento.direccion or empresa.direccion_matriz or "",
    )
    if empresa.contribuyente_especial:
        _sub(info, "contribuyenteEspecial", empresa.contribuyente_especial)
    _sub(info, "obligadoContabilidad", empresa.obligado_contabilidad_str)
    _sub(info, "tipoIdentificacionComprador", documento.tipo_identificacion_comprador)
    _sub(info, "razonSocialComprador", documento.razon_social_comprador)
    _sub(info, "identificacionComprador", documento.identificacion_comprador)


def _total_con_impuestos(lines: List, nota_credito: bool = False) -> etree._Element:
    total = etree.Element("totalConImpuestos")
    for (codigo_porcentaje, tarifa), datos in _agrupar_iva(lines).items():
        impuesto = etree.SubElement(total, "totalImpuesto")
        _sub(impuesto, "codigo", IVA_CODIGO)
        _sub(impuesto, "codigoPorcentaje", codigo_porcentaje)
        _sub(impuesto, "baseImponible", _format_decimal(datos["base"]))
        if not nota_credito:
            _sub(impuesto, "tarifa", _format_decimal(tarifa))
        _sub(impuesto, "valor", _format_decimal(datos["valor"]))
    return total


def _detalles(lines: List, nota_credito: bool = False) -> etree._Element:
    detalles = etree.Element("detalles")
    for line in lines:
        detalle = etree.SubElement(detalles, "detalle")
        _sub(detalle, "codigoInterno" if nota_credito else "codigoPrincipal", line.codigo)
        _sub(detalle, "descripcion", line.descripcion)
        _sub(detalle, "cantidad", _format_decimal(line.cantidad, 6))
        _sub(detalle, "precioUnitario", _format_decimal(line.precio_unitario, 6))
        _sub(detalle, "descuento", _format_decimal(line.descuento))
        _sub(detalle, "precioTotalSinImpuesto", _format_decimal(line.subtotal))

        impuesto = etree.SubElement(etree.SubElement(detalle, "impuestos"), "impuesto")
        _sub(impuesto, "codigo", IVA_CODIGO)
        _sub(impuesto, "codigoPorcentaje", line.iva_codigo_porcentaje)
        _sub(impuesto, "tarifa", _format_decimal(line.iva_tarifa))
        _sub(impuesto, "baseImponible", _format_decimal(line.subtotal))
        _sub(impuesto, "valor", _format_decimal(line.iva_valor))
    return detalles


def _info_adicional(campos: List[Tuple[str, str]]) -> etree._Element | None:
    campos = [(nombre, valor) for nombre, valor in campos if valor]
    if not campos:
        return None
    info = etree.Element("infoAdicional")
    for nombre, valor in campos:
        campo = _sub(info, "campoAdicional", valor[:300])
        campo.set("nombre", nombre)
    return info


def _serializar(root: etree._Element) -> bytes:
    return etree.tostring(root, encoding="UTF-8", xml_declaration=True, pretty_print=False)


# =========================
# Factura (codDoc 01)
# =========================


def build_invoice_xml(invoice: Invoice) -> bytes:
    lines = list(invoice.lines.all())
    logger.info("Construyendo XML de factura id=%s clave=%s", invoice.pk, invoice.clave_acceso)

    factura = etree.Element("factura", id="comprobante", version=SRI_VERSION_FACTURA)
    factura.append(_info_tributaria(invoice))

    info = etree.SubElement(factura, "infoFactura")
    _datos_emisor_comprador(info, invoice)
    if invoice.direccion_comprador:
        _sub(info, "direccionComprador", invoice.direccion_comprador)
    _sub(info, "totalSinImpuestos", _format_decimal(invoice.subtotal))
    _sub(
        info,
        "totalDescuento",
        _format_decimal(sum((line.descuento for line in lines), Decimal("0.00"))),
    )
    info.append(_total_con_impuestos(lines))
    _sub(info, "propina", "0.00")
    _sub(info, "importeTotal", _format_decimal(invoice.total))
    _sub(info, "moneda", invoice.moneda or "USD")

    pago = etree.SubElement(etree.SubElement(info, "pagos"), "pago")
    _sub(pago, "formaPago", invoice.forma_pago or "01")
    _sub(pago, "total", _format_decimal(invoice.total))
    _sub(pago, "plazo", str(invoice.plazo_pago or 0))
    _sub(pago, "unidadTiempo", "dias")

    factura.append(_detalles(lines))

    adicional = _info_adicional(
        [("Email", invoice.email_comprador), ("Observaciones", invoice.observaciones)]
    )
    if adicional is not None:
        factura.append(adicional)

    return _serializar(factura)


# =========================
# Nota de crédito (codDoc 04)
# =========================


def build_credit_note_xml(credit_note: CreditNote) -> bytes:
    lines = list(credit_note.lines.all())
    logger.info(
        "Construyendo XML de nota de crédito id=%s clave=%s",
        credit_note.pk,
        credit_note.clave_acceso,
    )

    nota = etree.Element("notaCredito", id="comprobante", version=SRI_VERSION_NOTA_CREDITO)
    nota.append(_info_tributaria(credit_note))

    info = etree.SubElement(nota, "infoNotaCredito")
    _datos_emisor_comprador(info, credit_note)
    _sub(info, "codDocModificado", credit_note.cod_doc_modificado)
    _sub(info, "numDocModificado", credit_note.num_doc_modificado)
    _sub(
        info,
        "fechaEmisionDocSustento",
        _format_fecha(credit_note.fecha_emision_doc_sustento),
    )
    _sub(info, "totalSinImpuestos", _format_decimal(credit_note.subtotal))
    _sub(info, "valorModificacion", _format_decimal(credit_note.valor_modificacion))
    _sub(info, "moneda", credit_note.moneda or "USD")
    info.append(_total_con_impuestos(lines, nota_credito=True))
    _sub(info, "motivo", credit_note.motivo[:300])

    nota.append(_detalles(lines, nota_credito=True))

    adicional = _info_adicional([("Email", credit_note.email_comprador)])
    if adicional is not None:
        nota.append(adicional)

    return _serializar(nota)


def build_document_xml(documento: ElectronicDocument) -> bytes:
    if isinstance(documento, Invoice):
        return build_invoice_xml(documento)
    if isinstance(documento, CreditNote):
        return build_credit_note_xml(documento)
    raise TypeError(f"Tipo de comprobante no soportado: {type(documento).__name__}")
