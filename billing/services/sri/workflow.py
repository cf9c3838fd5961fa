# billing/services/sri/workflow.py
# -*- coding: utf-8 -*-
"""
Flujo SRI de comprobantes electrónicos (facturas y notas de crédito):

    BORRADOR -> PENDIENTE_FIRMA -> PENDIENTE_AUTORIZACION -> AUTORIZADO / RECHAZADO

Cada operación es un comando independiente que valida el estado de origen y
devuelve un dict:

    {"ok": bool, "estado": str, "mensaje": str, "mensajes": [...], ...}

Ninguna excepción cruza el límite del comando: los errores de validación se
devuelven como ok=False, y las fallas de infraestructura (BD, disco, firma,
red) se registran con stack trace, se anotan en SriErrorLog (best-effort),
se revierte la transacción y se devuelve un mensaje genérico.
"""
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, FrozenSet, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.models import CreditNote, ElectronicDocument, Invoice, SriErrorLog
from billing.services import ride as ride_service
from billing.services.sri import archivos
from billing.services.sri.client import SRIClient, SRIConnectionError
from billing.services.sri.signer import CertificateError, firmar_xml
from billing.services.sri.xml_builder import build_document_xml
from billing.utils import generar_clave_acceso

logger = logging.getLogger("billing.sri")

Estado = ElectronicDocument.Estado
Operacion = SriErrorLog.Operacion

CODIGOS_TRANSITORIOS_DEFAULT = ("INVALID_RESPONSE", "PARSE_ERROR")

ESTADOS_GENERAR_XML = (Estado.BORRADOR, Estado.PENDIENTE_FIRMA, Estado.PENDIENTE_AUTORIZACION)
ESTADOS_FIRMAR = (Estado.PENDIENTE_FIRMA, Estado.PENDIENTE_AUTORIZACION)
ESTADOS_CONSULTAR = (Estado.PENDIENTE_AUTORIZACION, Estado.AUTORIZADO)


class WorkflowError(Exception):
    """Errores de orquestación SRI que deben convertirse en resultado fallido."""


def codigos_transitorios() -> FrozenSet[str]:
    """
    Códigos de error que NO implican rechazo legal (respuesta ilegible del SRI).
    Configurable con settings.SRI_CODIGOS_TRANSITORIOS; comparación sin mayúsculas.
    """
    codigos = getattr(settings, "SRI_CODIGOS_TRANSITORIOS", CODIGOS_TRANSITORIOS_DEFAULT)
    return frozenset(str(c).upper() for c in codigos)


# =========================
# Helpers internos
# =========================


def _nombre(documento: ElectronicDocument) -> str:
    return "Nota de crédito" if isinstance(documento, CreditNote) else "Factura"


def _resultado(
    documento: ElectronicDocument,
    ok: bool,
    mensaje: str,
    mensajes: Optional[List[Dict[str, Any]]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    data = {
        "ok": ok,
        "estado": documento.estado,
        "mensaje": mensaje,
        "mensajes": mensajes or [],
    }
    data.update(extra)
    return data


def _fallo_validacion(documento: ElectronicDocument, mensaje: str) -> Dict[str, Any]:
    logger.warning("%s %s: %s", _nombre(documento), documento.pk, mensaje)
    return _resultado(
        documento,
        ok=False,
        mensaje=mensaje,
        mensajes=[{"origen": "VALIDACION", "detalle": mensaje}],
    )


def _actualizar_estado(
    documento: ElectronicDocument,
    estado: str,
    mensajes: Optional[List[Dict[str, Any]]] = None,
    extra_updates: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Cambia estado, agrega mensajes a mensajes_sri y aplica campos extra.
    """
    historial = documento.mensajes_sri or []
    if not isinstance(historial, list):
        historial = [historial]
    documento.mensajes_sri = historial + (mensajes or [])
    documento.estado = estado

    for campo, valor in (extra_updates or {}).items():
        setattr(documento, campo, valor)

    documento.save()
    logger.info(
        "%s %s actualizada a estado=%s (mensajes+=%s)",
        _nombre(documento),
        documento.pk,
        documento.estado,
        len(mensajes or []),
    )


def _fk_documento(documento: ElectronicDocument) -> Dict[str, Any]:
    if isinstance(documento, CreditNote):
        return {"credit_note": documento}
    return {"invoice": documento}


def _registrar_error(
    documento: ElectronicDocument,
    operacion: str,
    mensaje: str,
    codigo: Optional[str] = None,
    stack_trace: Optional[str] = None,
    datos_adicionales: Optional[str] = None,
) -> None:
    """
    Inserta un SriErrorLog sin propagar excepciones (best-effort).
    """
    try:
        SriErrorLog.objects.create(
            empresa_id=documento.empresa_id,
            operacion=operacion,
            codigo_error=codigo,
            mensaje=mensaje,
            stack_trace=stack_trace,
            datos_adicionales=datos_adicionales,
            **_fk_documento(documento),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "No se pudo registrar SriErrorLog para %s %s (%s): %s",
            _nombre(documento),
            documento.pk,
            operacion,
            exc,
        )


def _fallo_infraestructura(
    documento: ElectronicDocument,
    operacion: str,
    exc: Exception,
    accion: str,
) -> Dict[str, Any]:
    logger.exception(
        "Error en %s para %s %s: %s",
        operacion,
        _nombre(documento),
        documento.pk,
        exc,
    )
    # Descarta cambios en memoria que la transacción ya revirtió en BD
    try:
        documento.refresh_from_db()
    except Exception as refresh_exc:  # noqa: BLE001
        logger.exception(
            "No se pudo recargar %s %s tras el error: %s",
            _nombre(documento),
            documento.pk,
            refresh_exc,
        )

    _registrar_error(
        documento,
        operacion,
        mensaje=str(exc) or exc.__class__.__name__,
        stack_trace=traceback.format_exc(),
    )

    mensaje = f"Error interno al {accion}. Intente nuevamente."
    return _resultado(
        documento,
        ok=False,
        mensaje=mensaje,
        mensajes=[{"origen": operacion, "detalle": mensaje}],
    )


def _motivos_rechazo(documento: ElectronicDocument) -> str:
    logs = SriErrorLog.objects.filter(**_fk_documento(documento)).order_by("ocurrido_en", "id")
    return "; ".join(f"[{log.codigo_error or ''}] {log.mensaje}" for log in logs)


# =========================
# GenerateXml
# =========================


def generar_xml(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    Genera clave de acceso y XML del comprobante; estado -> PENDIENTE_FIRMA.

    Se permite regenerar desde PENDIENTE_FIRMA o PENDIENTE_AUTORIZACION: la
    clave de acceso anterior se reemplaza y la firma previa queda descartada.
    """
    if documento.estado not in ESTADOS_GENERAR_XML:
        return _fallo_validacion(
            documento,
            f"No se puede generar el XML en estado {documento.estado}.",
        )

    empresa = documento.empresa
    estab = documento.establecimiento
    punto = documento.punto_emision

    if empresa is None or not empresa.is_active:
        return _fallo_validacion(documento, "La empresa emisora no está activa o no existe.")
    if estab is None or not estab.is_active:
        return _fallo_validacion(documento, "El establecimiento no está activo o no existe.")
    if punto is None or not punto.is_active:
        return _fallo_validacion(documento, "El punto de emisión no está activo o no existe.")
    if not punto.codigo_valido():
        return _fallo_validacion(documento, f"Código de punto de emisión inválido: {punto.codigo!r}.")

    logger.info("Generando XML para %s %s", _nombre(documento), documento.pk)

    try:
        clave = generar_clave_acceso(
            fecha_emision=documento.fecha_emision,
            tipo_comprobante=documento.COD_DOC,
            ruc=empresa.ruc,
            ambiente=empresa.ambiente_efectivo,
            establecimiento=estab.codigo,
            punto_emision=punto.codigo,
            secuencial=documento.secuencial,
        )
    except ValueError as exc:
        return _fallo_validacion(documento, f"No se pudo generar la clave de acceso: {exc}")

    try:
        with transaction.atomic():
            documento.clave_acceso = clave
            documento.ambiente = empresa.ambiente_efectivo
            xml = build_document_xml(documento)
            ruta = archivos.guardar_xml(empresa.ruc, clave, xml)
            _actualizar_estado(
                documento,
                Estado.PENDIENTE_FIRMA,
                mensajes=[{"origen": "GENERAR_XML", "clave_acceso": clave}],
                extra_updates={"xml_path": ruta, "xml_firmado_path": None},
            )
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.GENERAR_XML, exc, "generar el XML")

    return _resultado(
        documento,
        ok=True,
        mensaje="XML generado correctamente.",
        clave_acceso=clave,
        xml_path=documento.xml_path,
    )


# =========================
# SignDocument
# =========================


def firmar_documento(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    Firma el XML con el certificado de la empresa; estado -> PENDIENTE_AUTORIZACION.
    """
    if documento.estado not in ESTADOS_FIRMAR:
        return _fallo_validacion(
            documento,
            f"El comprobante debe estar en PENDIENTE_FIRMA para firmarse (estado actual: {documento.estado}).",
        )
    if not documento.xml_path:
        return _fallo_validacion(documento, "Debe generar el XML antes de firmar.")
    if not archivos.existe(documento.xml_path):
        return _fallo_validacion(documento, "No se encuentra el XML en disco. Regenere el XML.")

    empresa = documento.empresa
    if not empresa.certificado_configurado:
        return _fallo_validacion(
            documento,
            "La empresa no tiene certificado digital y contraseña configurados.",
        )

    logger.info("Firmando XML de %s %s", _nombre(documento), documento.pk)

    try:
        xml_firmado = firmar_xml(empresa, archivos.leer_archivo(documento.xml_path))
    except CertificateError as exc:
        logger.warning("Firma rechazada para %s %s: %s", _nombre(documento), documento.pk, exc)
        _registrar_error(documento, Operacion.FIRMAR, str(exc), codigo="CERTIFICATE_ERROR")
        return _resultado(
            documento,
            ok=False,
            mensaje=str(exc),
            mensajes=[{"origen": "FIRMA", "detalle": str(exc)}],
        )
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.FIRMAR, exc, "firmar el XML")

    try:
        with transaction.atomic():
            ruta = archivos.guardar_xml_firmado(empresa.ruc, documento.clave_acceso, xml_firmado)
            _actualizar_estado(
                documento,
                Estado.PENDIENTE_AUTORIZACION,
                mensajes=[{"origen": "FIRMA", "detalle": "XML firmado."}],
                extra_updates={"xml_firmado_path": ruta},
            )
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.FIRMAR, exc, "firmar el XML")

    return _resultado(
        documento,
        ok=True,
        mensaje="XML firmado correctamente.",
        xml_firmado_path=documento.xml_firmado_path,
    )


# =========================
# SubmitToSRI
# =========================


def enviar_al_sri(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    Envía el XML firmado a Recepción SRI.

    - RECHAZADO: no se reenvía; se devuelven los motivos registrados.
    - Envío fallido: el estado no cambia (queda para reintento).
    - Envío exitoso: el estado sigue PENDIENTE_AUTORIZACION hasta consultar.
    """
    if documento.estado != Estado.PENDIENTE_AUTORIZACION:
        if documento.estado == Estado.RECHAZADO:
            motivos = _motivos_rechazo(documento)
            if motivos:
                return _fallo_validacion(
                    documento,
                    "El comprobante fue rechazado por el SRI y no puede reenviarse sin "
                    f"corrección. Motivos: {motivos}",
                )
        return _fallo_validacion(
            documento,
            "El comprobante debe estar en PENDIENTE_AUTORIZACION para enviarse "
            f"(estado actual: {documento.estado}).",
        )

    if not documento.xml_firmado_path:
        return _fallo_validacion(documento, "No existe XML firmado. Genere y firme el XML primero.")
    if not archivos.existe(documento.xml_firmado_path):
        return _fallo_validacion(
            documento, "No se encuentra el XML firmado en disco. Regenere y firme el XML."
        )

    logger.info(
        "Enviando %s %s al SRI (clave=%s)",
        _nombre(documento),
        documento.pk,
        documento.clave_acceso,
    )

    try:
        xml_firmado = archivos.leer_archivo(documento.xml_firmado_path)
        respuesta = SRIClient(documento.empresa).enviar_comprobante(xml_firmado)
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.ENVIAR, exc, "enviar el comprobante al SRI")

    errores = [e.as_dict() for e in respuesta.errores]

    if not respuesta.ok:
        detalle = "; ".join(f"{e.codigo}: {e.mensaje}" for e in respuesta.errores)
        if not detalle:
            detalle = f"estado={respuesta.estado or 'desconocido'}"
        logger.error(
            "Envío de %s %s al SRI fallido. Errores: %s",
            _nombre(documento),
            documento.pk,
            detalle,
        )
        return _resultado(
            documento,
            ok=False,
            mensaje=f"Envío al SRI fallido: {detalle}",
            mensajes=errores,
            estado_sri=respuesta.estado,
        )

    try:
        with transaction.atomic():
            _actualizar_estado(
                documento,
                documento.estado,
                mensajes=[{"origen": "RECEPCION", "estado": respuesta.estado, "mensajes": errores}],
            )
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.ENVIAR, exc, "enviar el comprobante al SRI")

    return _resultado(
        documento,
        ok=True,
        mensaje=f"Comprobante enviado al SRI. Estado: {respuesta.estado}",
        mensajes=errores,
        estado_sri=respuesta.estado,
    )


# =========================
# CheckAuthorization
# =========================


def consultar_autorizacion(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    Consulta la autorización por clave de acceso (idempotente).

    - Autorizado con número -> AUTORIZADO + número + fecha + XML autorizado.
    - EN PROCESAMIENTO -> sin cambios.
    - Todos los errores transitorios -> warning, sin cambios.
    - Cualquier otro error -> RECHAZADO + un SriErrorLog por error.
    - Ya AUTORIZADO: los errores en la reconsulta se ignoran (estado terminal).
    """
    if documento.estado not in ESTADOS_CONSULTAR:
        return _fallo_validacion(
            documento,
            f"No se puede consultar la autorización en estado {documento.estado}.",
        )
    if not documento.clave_acceso:
        return _fallo_validacion(documento, "El comprobante no tiene clave de acceso. Regenere el XML.")

    clave = documento.clave_acceso
    logger.info("Consultando autorización de %s %s (clave=%s)", _nombre(documento), documento.pk, clave)

    try:
        respuesta = SRIClient(documento.empresa).consultar_autorizacion(clave)
    except SRIConnectionError as exc:
        logger.warning(
            "Sin conexión con Autorización SRI para %s %s (se reintentará): %s",
            _nombre(documento),
            documento.pk,
            exc,
        )
        return _resultado(
            documento,
            ok=False,
            mensaje="No fue posible comunicarse con el SRI. Intente nuevamente.",
            mensajes=[{"origen": "AUTORIZACION", "detalle": str(exc)}],
        )
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(
            documento, Operacion.CONSULTAR_AUTORIZACION, exc, "consultar la autorización"
        )

    errores = [e.as_dict() for e in respuesta.errores]

    try:
        with transaction.atomic():
            if respuesta.autorizado and respuesta.numero_autorizacion:
                logger.info(
                    "%s %s AUTORIZADA. Número de autorización: %s",
                    _nombre(documento),
                    documento.pk,
                    respuesta.numero_autorizacion,
                )
                _actualizar_estado(
                    documento,
                    Estado.AUTORIZADO,
                    mensajes=[
                        {
                            "origen": "AUTORIZACION",
                            "estado": respuesta.estado,
                            "numero_autorizacion": respuesta.numero_autorizacion,
                        }
                    ],
                    extra_updates={
                        "numero_autorizacion": respuesta.numero_autorizacion,
                        "fecha_autorizacion": respuesta.fecha_autorizacion or timezone.now(),
                        "xml_autorizado": respuesta.xml_autorizado,
                    },
                )
                mensaje = "Comprobante autorizado por el SRI."

            elif respuesta.en_procesamiento:
                logger.info("%s %s sigue EN PROCESAMIENTO en el SRI", _nombre(documento), documento.pk)
                mensaje = "El comprobante sigue en procesamiento en el SRI."

            elif respuesta.errores:
                detalle = "; ".join(f"{e.codigo}: {e.mensaje}" for e in respuesta.errores)
                transitorios = codigos_transitorios()

                if all(e.codigo.upper() in transitorios for e in respuesta.errores):
                    logger.warning(
                        "%s %s recibió una respuesta ilegible del SRI (se reintentará): %s",
                        _nombre(documento),
                        documento.pk,
                        detalle,
                    )
                    mensaje = "Respuesta del SRI no interpretable; se reintentará."
                elif documento.estado == Estado.AUTORIZADO:
                    # AUTORIZADO es terminal.
                    logger.warning(
                        "%s %s ya AUTORIZADA; se ignoran errores en la reconsulta: %s",
                        _nombre(documento),
                        documento.pk,
                        detalle,
                    )
                    mensaje = "El comprobante ya está autorizado; no se modifica su estado."
                else:
                    logger.error(
                        "%s %s RECHAZADA por el SRI. Errores: %s",
                        _nombre(documento),
                        documento.pk,
                        detalle,
                    )
                    _actualizar_estado(
                        documento,
                        Estado.RECHAZADO,
                        mensajes=[
                            {"origen": "AUTORIZACION", "estado": respuesta.estado, "mensajes": errores}
                        ],
                    )
                    for error in respuesta.errores:
                        SriErrorLog.objects.create(
                            empresa_id=documento.empresa_id,
                            operacion=Operacion.CONSULTAR_AUTORIZACION,
                            codigo_error=error.codigo,
                            mensaje=error.mensaje,
                            datos_adicionales=error.informacion_adicional,
                            **_fk_documento(documento),
                        )
                    mensaje = f"Comprobante rechazado por el SRI: {detalle}"
            else:
                mensaje = f"Estado SRI sin cambios: {respuesta.estado or 'desconocido'}."
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(
            documento, Operacion.CONSULTAR_AUTORIZACION, exc, "consultar la autorización"
        )

    logger.info(
        "Consulta de autorización completada para %s %s. estado_sri=%s autorizado=%s",
        _nombre(documento),
        documento.pk,
        respuesta.estado,
        respuesta.autorizado,
    )
    return _resultado(
        documento,
        ok=True,
        mensaje=mensaje,
        mensajes=errores,
        estado_sri=respuesta.estado,
        autorizado=documento.estado == Estado.AUTORIZADO,
        numero_autorizacion=documento.numero_autorizacion,
    )


# =========================
# GenerateRIDE
# =========================


def generar_ride(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    Genera el PDF del RIDE de un comprobante AUTORIZADO. No cambia el estado.
    """
    if documento.estado != Estado.AUTORIZADO:
        return _fallo_validacion(
            documento,
            f"Solo se genera RIDE para comprobantes AUTORIZADOS (estado actual: {documento.estado}).",
        )
    if not documento.clave_acceso:
        return _fallo_validacion(documento, "El comprobante no tiene clave de acceso.")
    if not documento.numero_autorizacion:
        return _fallo_validacion(documento, "El comprobante no tiene número de autorización.")

    try:
        with transaction.atomic():
            pdf = ride_service.generar_ride_pdf(documento)
            documento.ride_path = archivos.guardar_ride(
                documento.empresa.ruc, documento.clave_acceso, pdf
            )
            documento.save(update_fields=["ride_path", "updated_at"])
    except Exception as exc:  # noqa: BLE001
        return _fallo_infraestructura(documento, Operacion.GENERAR_RIDE, exc, "generar el RIDE")

    logger.info("RIDE guardado para %s %s en %s", _nombre(documento), documento.pk, documento.ride_path)
    return _resultado(
        documento,
        ok=True,
        mensaje="RIDE generado correctamente.",
        ride_path=documento.ride_path,
    )


# =========================
# Pipeline de emisión
# =========================


def emitir_documento(documento: ElectronicDocument) -> Dict[str, Any]:
    """
    generar_xml -> firmar_documento -> enviar_al_sri, deteniéndose en el primer fallo.
    La autorización la confirma después la tarea periódica (o consultar_autorizacion).
    """
    pasos = []
    if documento.estado in (Estado.BORRADOR, Estado.PENDIENTE_FIRMA):
        pasos.append(generar_xml)
    if documento.estado in (Estado.BORRADOR, Estado.PENDIENTE_FIRMA) or not documento.xml_firmado_path:
        pasos.append(firmar_documento)
    pasos.append(enviar_al_sri)

    resultado: Dict[str, Any] = {}
    for paso in pasos:
        resultado = paso(documento)
        if not resultado["ok"]:
            logger.warning(
                "Emisión de %s %s detenida en %s: %s",
                _nombre(documento),
                documento.pk,
                paso.__name__,
                resultado["mensaje"],
            )
            resultado["paso"] = paso.__name__
            return resultado
    return resultado


def modelo_por_nombre(modelo: str) -> type[ElectronicDocument]:
    modelos = {"invoice": Invoice, "credit_note": CreditNote}
    try:
        return modelos[modelo]
    except KeyError:
        raise WorkflowError(f"Modelo de comprobante desconocido: {modelo!r}") from None
