# billing/tasks.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict

from celery import shared_task

from django.conf import settings

from billing import selectors
from billing.models import ElectronicDocument
from billing.services.sri.workflow import (
    WorkflowError,
    consultar_autorizacion,
    emitir_documento,
    generar_ride,
    modelo_por_nombre,
)

logger = logging.getLogger("billing.tasks")

Estado = ElectronicDocument.Estado


def _pausa(nombre: str, default: float) -> float:
    return float(getattr(settings, nombre, default))


def _barrido(
    nombre: str,
    querysets,
    comando: Callable[[ElectronicDocument], Dict[str, Any]],
    requiere: Callable[[ElectronicDocument], bool],
    clasificar: Callable[[ElectronicDocument, Dict[str, Any]], str],
    pausa: float,
) -> Dict[str, Any]:
    """
    Recorre los comprobantes y ejecuta `comando` por cada uno.

    Un comprobante que falla se registra y se cuenta; nunca detiene el barrido.
    """
    contadores = {"procesados": 0, "exitosos": 0, "errores": 0, "pendientes": 0, "omitidos": 0}

    for qs in querysets:
        for documento in qs:
            if not requiere(documento):
                logger.warning(
                    "%s: %s %s omitido (faltan datos SRI).",
                    nombre,
                    documento.__class__.__name__,
                    documento.pk,
                )
                contadores["omitidos"] += 1
                continue

            contadores["procesados"] += 1
            try:
                resultado = comando(documento)
                contadores[clasificar(documento, resultado)] += 1
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "%s: error procesando %s %s (empresa=%s): %s",
                    nombre,
                    documento.__class__.__name__,
                    documento.pk,
                    documento.empresa_id,
                    exc,
                )
                contadores["errores"] += 1

            if pausa > 0:
                time.sleep(pausa)

    logger.info(
        "%s finalizado: procesados=%s exitosos=%s errores=%s pendientes=%s omitidos=%s",
        nombre,
        contadores["procesados"],
        contadores["exitosos"],
        contadores["errores"],
        contadores["pendientes"],
        contadores["omitidos"],
    )
    return contadores


def _clasificar_autorizacion(documento: ElectronicDocument, resultado: Dict[str, Any]) -> str:
    if resultado.get("ok") and documento.estado == Estado.AUTORIZADO:
        return "exitosos"
    if resultado.get("ok") and documento.estado == Estado.PENDIENTE_AUTORIZACION:
        return "pendientes"
    return "errores"


def _clasificar_ride(documento: ElectronicDocument, resultado: Dict[str, Any]) -> str:
    return "exitosos" if resultado.get("ok") else "errores"


# =====================================================
# Tarea periódica: autorizaciones pendientes (todas las empresas)
# =====================================================


@shared_task
def verificar_autorizaciones_pendientes() -> Dict[str, Any]:
    """
    Consulta en el SRI todas las facturas y luego todas las notas de crédito
    en PENDIENTE_AUTORIZACION. Cada comprobante usa la empresa a la que pertenece.
    """
    logger.info("verificar_autorizaciones_pendientes iniciado")
    return _barrido(
        "verificar_autorizaciones_pendientes",
        [selectors.pendientes_de_autorizacion(m) for m in selectors.MODELOS_SRI],
        comando=consultar_autorizacion,
        requiere=lambda d: bool(d.clave_acceso),
        clasificar=_clasificar_autorizacion,
        pausa=_pausa("SRI_PAUSA_AUTORIZACIONES", 0.5),
    )


# =====================================================
# Tarea periódica: RIDE de comprobantes autorizados
# =====================================================


@shared_task
def generar_rides_autorizados() -> Dict[str, Any]:
    """
    Genera el RIDE de los comprobantes AUTORIZADOS que aún no lo tienen.
    """
    logger.info("generar_rides_autorizados iniciado")
    return _barrido(
        "generar_rides_autorizados",
        [selectors.autorizados_sin_ride(m) for m in selectors.MODELOS_SRI],
        comando=generar_ride,
        requiere=lambda d: bool(d.clave_acceso) and bool(d.numero_autorizacion),
        clasificar=_clasificar_ride,
        pausa=_pausa("SRI_PAUSA_RIDES", 0.2),
    )


# =====================================================
# Tarea: emisión (XML + firma + envío) en background
# =====================================================


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def emitir_documento_task(self, modelo: str, documento_id: int) -> Dict[str, Any]:
    """
    Emite un comprobante en background.

    `modelo` es "invoice" o "credit_note". Los fallos de negocio vuelven en el
    resultado; solo las excepciones inesperadas se reintentan con backoff
    exponencial (1, 2, 4 minutos).
    """
    try:
        model_cls = modelo_por_nombre(modelo)
    except WorkflowError as exc:
        logger.error("emitir_documento_task: %s", exc)
        return {"ok": False, "error": str(exc)}

    documento = selectors.documentos(model_cls).filter(pk=documento_id).first()
    if documento is None:
        logger.error("emitir_documento_task: %s %s no existe.", modelo, documento_id)
        return {"ok": False, "error": "DocumentoNoExiste"}

    logger.info("emitir_documento_task iniciado para %s id=%s", modelo, documento_id)

    try:
        resultado = emitir_documento(documento)
    except Exception as exc:  # noqa: BLE001
        logger.exception(
            "Error inesperado en emitir_documento_task para %s %s: %s",
            modelo,
            documento_id,
            exc,
        )
        if self.request.retries < self.max_retries:
            countdown = 60 * (2**self.request.retries)
            raise self.retry(exc=exc, countdown=countdown)
        return {"ok": False, "error": str(exc)}

    logger.info(
        "emitir_documento_task finalizado para %s id=%s, estado=%s",
        modelo,
        documento_id,
        resultado.get("estado"),
    )
    return resultado
