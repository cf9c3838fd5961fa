# billing/services/sri/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from zeep import Client
from zeep.exceptions import Fault, TransportError
from zeep.helpers import serialize_object
from zeep.transports import Transport

from billing.models import Empresa

logger = logging.getLogger("billing.sri")


# =========================
# Configuración de endpoints SRI (tomados desde settings)
# =========================

SRI_TEST_RECEPCION_WSDL = getattr(
    settings,
    "SRI_TEST_RECEPCION_WSDL",
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
)
SRI_TEST_AUTORIZACION_WSDL = getattr(
    settings,
    "SRI_TEST_AUTORIZACION_WSDL",
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
)
SRI_PROD_RECEPCION_WSDL = getattr(
    settings,
    "SRI_PROD_RECEPCION_WSDL",
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
)
SRI_PROD_AUTORIZACION_WSDL = getattr(
    settings,
    "SRI_PROD_AUTORIZACION_WSDL",
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
)

SRI_SSL_VERIFY = getattr(settings, "SRI_SSL_VERIFY", True)
SRI_REQUEST_TIMEOUT = getattr(settings, "SRI_REQUEST_TIMEOUT", 15)  # segundos
SRI_RETRY_MAX = getattr(settings, "SRI_RETRY_MAX", 3)
SRI_RETRY_BACKOFF = getattr(settings, "SRI_RETRY_BACKOFF", 2)

# Códigos de error que genera el propio cliente (no vienen del SRI)
CODIGO_ERROR_CONEXION = "CONNECTION_ERROR"
CODIGO_RESPUESTA_INVALIDA = "INVALID_RESPONSE"
CODIGO_ERROR_PARSEO = "PARSE_ERROR"

ESTADO_RECIBIDA = "RECIBIDA"
ESTADO_AUTORIZADO = "AUTORIZADO"
ESTADO_EN_PROCESAMIENTO = "EN PROCESAMIENTO"


class SRIConnectionError(Exception):
    """No fue posible comunicarse con el Web Service del SRI (red, timeout, WSDL)."""


@dataclass
class ErrorSRI:
    codigo: str
    mensaje: str
    informacion_adicional: Optional[str] = None
    tipo: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "identificador": self.codigo,
            "mensaje": self.mensaje,
            "informacion_adicional": self.informacion_adicional,
            "tipo": self.tipo,
        }


@dataclass
class RespuestaRecepcion:
    """
    Respuesta normalizada de RecepcionComprobantesOffline.
    """

    ok: bool
    estado: Optional[str]
    errores: List[ErrorSRI] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RespuestaAutorizacion:
    """
    Respuesta normalizada de AutorizacionComprobantesOffline.
    """

    autorizado: bool
    estado: str
    numero_autorizacion: Optional[str] = None
    fecha_autorizacion: Optional[datetime] = None
    xml_autorizado: Optional[str] = None
    errores: List[ErrorSRI] = field(default_factory=list)

    @property
    def en_procesamiento(self) -> bool:
        return self.estado.upper() == ESTADO_EN_PROCESAMIENTO


def _como_lista(valor: Any) -> List[Any]:
    if not valor:
        return []
    if isinstance(valor, list):
        return valor
    return [valor]


def _extraer_errores(mensajes: Any) -> List[ErrorSRI]:
    """
    Convierte el nodo <mensajes><mensaje>…</mensaje></mensajes> en ErrorSRI.
    """
    errores: List[ErrorSRI] = []
    contenedor = mensajes or {}
    lista = contenedor.get("mensaje") if isinstance(contenedor, dict) else contenedor
    for m in _como_lista(lista):
        errores.append(
            ErrorSRI(
                codigo=str(m.get("identificador") or ""),
                mensaje=str(m.get("mensaje") or ""),
                informacion_adicional=m.get("informacionAdicional"),
                tipo=m.get("tipo"),
            )
        )
    return errores


def _normalizar_fecha(valor: Any) -> Optional[datetime]:
    if not valor:
        return None
    if isinstance(valor, datetime):
        fecha = valor
    else:
        fecha = parse_datetime(str(valor))
        if fecha is None:
            return None
    if timezone.is_naive(fecha):
        fecha = timezone.make_aware(fecha)
    return fecha


def parsear_respuesta_recepcion(data: Dict[str, Any]) -> RespuestaRecepcion:
    estado = (data.get("estado") or "").upper() or None

    errores: List[ErrorSRI] = []
    comprobantes = data.get("comprobantes") or {}
    for comp in _como_lista(comprobantes.get("comprobante")):
        errores.extend(_extraer_errores(comp.get("mensajes")))

    return RespuestaRecepcion(
        ok=estado == ESTADO_RECIBIDA,
        estado=estado,
        errores=errores,
        raw=data,
    )


def parsear_respuesta_autorizacion(data: Dict[str, Any]) -> RespuestaAutorizacion:
    """
    Interpreta la respuesta de autorizacionComprobante.

    - Sin nodo <autorizacion> -> INVALID_RESPONSE.
    - Cualquier excepción interpretando el contenido -> PARSE_ERROR.
    """
    try:
        autorizaciones = (data.get("autorizaciones") or {}).get("autorizacion")
        lista = _como_lista(autorizaciones)
        if not lista:
            return RespuestaAutorizacion(
                autorizado=False,
                estado="ERROR",
                errores=[
                    ErrorSRI(
                        codigo=CODIGO_RESPUESTA_INVALIDA,
                        mensaje="La respuesta del SRI no contiene el nodo de autorización.",
                    )
                ],
            )

        primera = lista[0]
        estado = str(primera.get("estado") or "").strip().upper()
        return RespuestaAutorizacion(
            autorizado=estado == ESTADO_AUTORIZADO,
            estado=estado,
            numero_autorizacion=primera.get("numeroAutorizacion"),
            fecha_autorizacion=_normalizar_fecha(primera.get("fechaAutorizacion")),
            xml_autorizado=primera.get("comprobante"),
            errores=_extraer_errores(primera.get("mensajes")),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error interpretando respuesta de autorización SRI: %s", exc)
        return RespuestaAutorizacion(
            autorizado=False,
            estado="ERROR",
            errores=[
                ErrorSRI(
                    codigo=CODIGO_ERROR_PARSEO,
                    mensaje=f"No se pudo interpretar la respuesta del SRI: {exc}",
                )
            ],
        )


class SRIClient:
    """
    Cliente SOAP para los Web Services Offline del SRI:

    - RecepcionComprobantesOffline: validarComprobante(xml)
    - AutorizacionComprobantesOffline: autorizacionComprobante(claveAccesoComprobante)

    El ambiente (Pruebas/Producción) sale de empresa.ambiente_efectivo.
    Los clientes zeep se crean la primera vez que se usan.
    """

    def __init__(self, empresa: Empresa, timeout: Optional[int] = None):
        self.empresa = empresa
        self.timeout = timeout or SRI_REQUEST_TIMEOUT

        if empresa.ambiente_efectivo == Empresa.AMBIENTE_PRODUCCION:
            self.recepcion_wsdl = SRI_PROD_RECEPCION_WSDL
            self.autorizacion_wsdl = SRI_PROD_AUTORIZACION_WSDL
        else:
            self.recepcion_wsdl = SRI_TEST_RECEPCION_WSDL
            self.autorizacion_wsdl = SRI_TEST_AUTORIZACION_WSDL

        self._recepcion_client: Optional[Client] = None
        self._autorizacion_client: Optional[Client] = None

    def _transport(self) -> Transport:
        session = requests.Session()
        session.verify = SRI_SSL_VERIFY
        session.headers.update({"User-Agent": "BillingSRI/1.0 (Python/Zeep)"})

        retry = Retry(
            total=SRI_RETRY_MAX,
            backoff_factor=SRI_RETRY_BACKOFF,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return Transport(
            session=session,
            timeout=self.timeout,
            operation_timeout=self.timeout,
        )

    @property
    def recepcion_client(self) -> Client:
        if self._recepcion_client is None:
            logger.info(
                "Inicializando cliente Recepción SRI para %s ambiente=%s wsdl=%s",
                self.empresa.ruc,
                self.empresa.ambiente_efectivo,
                self.recepcion_wsdl,
            )
            self._recepcion_client = Client(wsdl=self.recepcion_wsdl, transport=self._transport())
        return self._recepcion_client

    @property
    def autorizacion_client(self) -> Client:
        if self._autorizacion_client is None:
            logger.info(
                "Inicializando cliente Autorización SRI para %s ambiente=%s wsdl=%s",
                self.empresa.ruc,
                self.empresa.ambiente_efectivo,
                self.autorizacion_wsdl,
            )
            self._autorizacion_client = Client(
                wsdl=self.autorizacion_wsdl, transport=self._transport()
            )
        return self._autorizacion_client

    # -------------------------
    # Recepción: validarComprobante
    # -------------------------

    def enviar_comprobante(self, xml_firmado: bytes | str) -> RespuestaRecepcion:
        """
        Envía el comprobante firmado al WS de recepción del SRI.

        Los errores de red no se propagan: se devuelven como CONNECTION_ERROR
        para que el comprobante quede listo para reintento.
        """
        if isinstance(xml_firmado, str):
            xml_firmado = xml_firmado.encode("utf-8")

        try:
            respuesta = self.recepcion_client.service.validarComprobante(xml_firmado)
        except (requests.RequestException, TransportError, OSError) as exc:
            logger.exception("Error de red/timeout en RecepcionComprobantesOffline: %s", exc)
            return RespuestaRecepcion(
                ok=False,
                estado=None,
                errores=[ErrorSRI(codigo=CODIGO_ERROR_CONEXION, mensaje=str(exc))],
            )
        except Fault as exc:
            logger.exception("Error SOAP en RecepcionComprobantesOffline: %s", exc)
            return RespuestaRecepcion(
                ok=False,
                estado=None,
                errores=[ErrorSRI(codigo="SOAP_FAULT", mensaje=str(exc))],
            )

        data = serialize_object(respuesta)
        if not isinstance(data, dict):
            data = {"value": data}

        resultado = parsear_respuesta_recepcion(data)
        logger.info(
            "Respuesta RecepcionComprobantesOffline estado=%s errores=%s",
            resultado.estado,
            [e.as_dict() for e in resultado.errores],
        )
        return resultado

    # -------------------------
    # Autorización: autorizacionComprobante
    # -------------------------

    def consultar_autorizacion(self, clave_acceso: str) -> RespuestaAutorizacion:
        """
        Consulta el estado de autorización de un comprobante por su clave de acceso.

        Lanza SRIConnectionError ante problemas de red: el comprobante no debe
        cambiar de estado por una falla de conectividad.
        """
        try:
            respuesta = self.autorizacion_client.service.autorizacionComprobante(
                claveAccesoComprobante=clave_acceso
            )
        except (requests.RequestException, TransportError, OSError) as exc:
            raise SRIConnectionError(
                f"No fue posible conectarse al Web Service de Autorización del SRI: {exc}"
            ) from exc
        except Fault as exc:
            logger.exception("Error SOAP en AutorizacionComprobantesOffline: %s", exc)
            return RespuestaAutorizacion(
                autorizado=False,
                estado="ERROR",
                errores=[ErrorSRI(codigo=CODIGO_RESPUESTA_INVALIDA, mensaje=str(exc))],
            )

        data = serialize_object(respuesta)
        if not isinstance(data, dict):
            data = {"value": data}

        resultado = parsear_respuesta_autorizacion(data)
        logger.info(
            "Respuesta AutorizacionComprobantesOffline clave=%s estado=%s numero=%s errores=%s",
            clave_acceso,
            resultado.estado,
            resultado.numero_autorizacion,
            [e.as_dict() for e in resultado.errores],
        )
        return resultado
