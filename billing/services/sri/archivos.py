# billing/services/sri/archivos.py
# -*- coding: utf-8 -*-
"""
Almacenamiento en disco de los artefactos SRI de cada comprobante:

    <SRI_DOCUMENTOS_ROOT>/<ruc>/xml/<clave>.xml
    <SRI_DOCUMENTOS_ROOT>/<ruc>/firmados/<clave>.xml
    <SRI_DOCUMENTOS_ROOT>/<ruc>/ride/<clave>.pdf

Los modelos guardan la ruta como texto (xml_path, xml_firmado_path, ride_path).
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from django.conf import settings

logger = logging.getLogger("billing.sri")

CARPETA_XML = "xml"
CARPETA_FIRMADOS = "firmados"
CARPETA_RIDE = "ride"


def documentos_root() -> Path:
    root = getattr(settings, "SRI_DOCUMENTOS_ROOT", None)
    if not root:
        root = Path(settings.MEDIA_ROOT) / "comprobantes"
    return Path(root)


def ruta_documento(ruc: str, carpeta: str, clave_acceso: str, extension: str) -> Path:
    return documentos_root() / ruc / carpeta / f"{clave_acceso}.{extension}"


def guardar_archivo(ruta: Path, contenido: bytes | str) -> str:
    """
    Escribe el archivo (creando directorios) y devuelve la ruta como str.
    """
    if isinstance(contenido, str):
        contenido = contenido.encode("utf-8")
    ruta.parent.mkdir(parents=True, exist_ok=True)
    ruta.write_bytes(contenido)
    logger.debug("Archivo SRI escrito: %s (%s bytes)", ruta, len(contenido))
    return str(ruta)


def guardar_xml(ruc: str, clave_acceso: str, xml: bytes | str) -> str:
    return guardar_archivo(ruta_documento(ruc, CARPETA_XML, clave_acceso, "xml"), xml)


def guardar_xml_firmado(ruc: str, clave_acceso: str, xml: bytes | str) -> str:
    return guardar_archivo(ruta_documento(ruc, CARPETA_FIRMADOS, clave_acceso, "xml"), xml)


def guardar_ride(ruc: str, clave_acceso: str, pdf: bytes) -> str:
    return guardar_archivo(ruta_documento(ruc, CARPETA_RIDE, clave_acceso, "pdf"), pdf)


def existe(ruta: str | None) -> bool:
    return bool(ruta) and os.path.isfile(ruta)


def leer_archivo(ruta: str) -> bytes:
    with open(ruta, "rb") as f:
        return f.read()
