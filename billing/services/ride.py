# billing/services/ride.py
# -*- coding: utf-8 -*-
"""
RIDE (Representación Impresa del Documento Electrónico) en PDF con ReportLab,
para facturas y notas de crédito autorizadas.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from io import BytesIO
from typing import Any, List

from reportlab.graphics.barcode import code128
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from billing.models import CreditNote, ElectronicDocument

logger = logging.getLogger("billing.ride")


class RideError(Exception):
    """Error controlado al generar el RIDE de un comprobante."""


def _fmt_amount(value: Any) -> str:
    if value is None:
        return "0.00"
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return f"{value:.2f}"


def _titulo(documento: ElectronicDocument) -> str:
    if isinstance(documento, CreditNote):
        return "NOTA DE CRÉDITO"
    return "FACTURA"


def _build_qr_drawing(contenido: str) -> Drawing:
    qr = QrCodeWidget(contenido)
    bounds = qr.getBounds()
    size = 30 * mm
    width = bounds[2] - bounds[0]
    height = bounds[3] - bounds[1]
    drawing = Drawing(size, size, transform=[size / width, 0, 0, size / height, 0, 0])
    drawing.add(qr)
    return drawing


def _tabla(rows: List[List[Any]], col_widths: List[float], header: bool = False) -> Table:
    table = Table(rows, colWidths=col_widths)
    estilo = [
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
    ]
    if header:
        estilo += [
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#EEEEEE")),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ]
    table.setStyle(TableStyle(estilo))
    return table


def construir_pdf(documento: ElectronicDocument) -> bytes:
    """
    Construye el PDF del RIDE y retorna los bytes.
    """
    empresa = documento.empresa
    styles = getSampleStyleSheet()
    normal = styles["Normal"]
    title_style = ParagraphStyle(
        "RideTitle",
        parent=normal,
        fontSize=14,
        leading=16,
        alignment=TA_CENTER,
        fontName="Helvetica-Bold",
    )
    value_style = ParagraphStyle("Value", parent=normal, fontSize=8, leading=10)

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=15 * mm,
        leftMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
    )

    ambiente = "PRODUCCIÓN" if documento.ambiente == "2" else "PRUEBAS"
    fecha_aut = (
        documento.fecha_autorizacion.strftime("%d/%m/%Y %H:%M:%S")
        if documento.fecha_autorizacion
        else "-"
    )

    emisor_html = (
        f"<b>{empresa.razon_social}</b><br/>"
        f"<b>Dirección Matriz:</b> {empresa.direccion_matriz}<br/>"
        f"<b>Obligado a llevar contabilidad:</b> {empresa.obligado_contabilidad_str}"
    )
    if empresa.contribuyente_especial:
        emisor_html += f"<br/><b>Contribuyente especial:</b> {empresa.contribuyente_especial}"

    sri_html = (
        f"<b>R.U.C.:</b> {empresa.ruc}<br/>"
        f"<b>{_titulo(documento)}</b><br/>"
        f"<b>No.</b> {documento.numero}<br/>"
        f"<b>NÚMERO DE AUTORIZACIÓN:</b><br/>{documento.numero_autorizacion}<br/>"
        f"<b>FECHA Y HORA DE AUTORIZACIÓN:</b> {fecha_aut}<br/>"
        f"<b>AMBIENTE:</b> {ambiente}<br/>"
        f"<b>EMISIÓN:</b> NORMAL<br/>"
        f"<b>CLAVE DE ACCESO:</b>"
    )

    clave = documento.clave_acceso
    sri_cell: List[Any] = [
        Paragraph(sri_html, value_style),
        code128.Code128(clave, barHeight=12 * mm, barWidth=0.3),
        Paragraph(clave, value_style),
    ]

    elements: List[Any] = [
        Paragraph(empresa.nombre_comercial or empresa.razon_social, title_style),
        Spacer(1, 6 * mm),
        Table(
            [[Paragraph(emisor_html, value_style), sri_cell]],
            colWidths=[85 * mm, 95 * mm],
            style=TableStyle(
                [
                    ("BOX", (0, 0), (0, 0), 0.5, colors.black),
                    ("BOX", (1, 0), (1, 0), 0.5, colors.black),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ]
            ),
        ),
        Spacer(1, 4 * mm),
    ]

    comprador_html = (
        f"<b>Razón Social / Nombres:</b> {documento.razon_social_comprador}<br/>"
        f"<b>Identificación:</b> {documento.identificacion_comprador}<br/>"
        f"<b>Fecha de emisión:</b> {documento.fecha_emision.strftime('%d/%m/%Y')}"
    )
    if isinstance(documento, CreditNote):
        comprador_html += (
            f"<br/><b>Comprobante que se modifica:</b> FACTURA {documento.num_doc_modificado}"
            f"<br/><b>Fecha emisión (comprobante a modificar):</b> "
            f"{documento.fecha_emision_doc_sustento.strftime('%d/%m/%Y')}"
            f"<br/><b>Razón de modificación:</b> {documento.motivo}"
        )
    elements += [Paragraph(comprador_html, value_style), Spacer(1, 4 * mm)]

    rows: List[List[Any]] = [
        ["Código", "Descripción", "Cant.", "P. Unitario", "Descuento", "Total"]
    ]
    for line in documento.lines.all():
        rows.append(
            [
                line.codigo,
                Paragraph(line.descripcion, value_style),
                f"{line.cantidad.normalize():f}",
                _fmt_amount(line.precio_unitario),
                _fmt_amount(line.descuento),
                _fmt_amount(line.subtotal),
            ]
        )
    elements += [
        _tabla(rows, [22 * mm, 68 * mm, 18 * mm, 24 * mm, 22 * mm, 26 * mm], header=True),
        Spacer(1, 4 * mm),
    ]

    totales = [
        ["SUBTOTAL", _fmt_amount(documento.subtotal)],
        ["IVA", _fmt_amount(documento.iva)],
        [
            "VALOR MODIFICACIÓN" if isinstance(documento, CreditNote) else "VALOR TOTAL",
            _fmt_amount(documento.total),
        ],
    ]
    elements.append(
        Table(
            [[_build_qr_drawing(clave), _tabla(totales, [40 * mm, 26 * mm])]],
            colWidths=[114 * mm, 66 * mm],
            style=TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]),
        )
    )

    doc.build(elements)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    return pdf_bytes


def generar_ride_pdf(documento: ElectronicDocument) -> bytes:
    """
    Valida que el comprobante tenga los datos de autorización y genera el PDF.
    """
    if documento.estado != ElectronicDocument.Estado.AUTORIZADO:
        raise RideError(
            f"No se puede generar RIDE para {documento.__class__.__name__} {documento.pk}: "
            f"estado={documento.estado!r}; se requiere AUTORIZADO."
        )
    if not documento.clave_acceso or not documento.numero_autorizacion:
        raise RideError(
            f"{documento.__class__.__name__} {documento.pk} no tiene clave de acceso "
            "o número de autorización."
        )

    try:
        pdf_bytes = construir_pdf(documento)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Error interno al generar RIDE para %s %s",
            documento.__class__.__name__,
            documento.pk,
        )
        raise RideError(f"Error generando el PDF del RIDE: {exc}") from exc

    logger.info(
        "RIDE generado para %s %s (%s bytes)",
        documento.__class__.__name__,
        documento.pk,
        len(pdf_bytes),
    )
    return pdf_bytes
