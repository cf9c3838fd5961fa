# billing/services/sri/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List

from django.conf import settings
from django.utils import timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

from lxml import etree

from billing.models import Empresa

logger = logging.getLogger("billing.sri")

SRI_DIAS_AVISO_CERTIFICADO = getattr(settings, "SRI_DIAS_AVISO_CERTIFICADO", 30)

DS_NS = "http://www.w3.org/2000/09/xmldsig#"
XADES_NS = "http://uri.etsi.org/01903/v1.3.2#"

ALG_C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ALG_RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
ALG_SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
ALG_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
TIPO_SIGNED_PROPERTIES = "http://uri.etsi.org/01903#SignedProperties"


class CertificateError(Exception):
    """Errores relacionados con el certificado PKCS#12 o con la firma."""


@dataclass
class CertificadoCargado:
    private_key: Any
    certificado: x509.Certificate
    adicionales: List[x509.Certificate] = field(default_factory=list)

    @property
    def vence(self) -> datetime:
        return self.certificado.not_valid_after_utc

    @property
    def dias_restantes(self) -> int:
        return (self.vence - timezone.now()).days

    @property
    def por_vencer(self) -> bool:
        return self.dias_restantes <= SRI_DIAS_AVISO_CERTIFICADO


def cargar_certificado(empresa: Empresa) -> CertificadoCargado:
    """
    Carga el .p12 de la empresa y verifica su vigencia.

    - Certificado vencido (o aún no vigente) -> CertificateError.
    - Vence dentro de SRI_DIAS_AVISO_CERTIFICADO días -> solo warning.
    """
    if not empresa.certificado:
        raise CertificateError(f"La empresa {empresa.ruc} no tiene certificado .p12 cargado.")

    password = empresa.certificado_password
    if not password:
        raise CertificateError(
            f"La empresa {empresa.ruc} no tiene contraseña de certificado configurada."
        )

    cert_path = empresa.certificado.path
    if not os.path.exists(cert_path):
        raise CertificateError(f"No se encuentra el archivo de certificado en: {cert_path}")

    try:
        with open(cert_path, "rb") as f:
            pkcs12_data = f.read()
    except OSError as exc:
        raise CertificateError(f"Error leyendo archivo de certificado: {exc}") from exc

    try:
        private_key, cert, adicionales = pkcs12.load_key_and_certificates(
            pkcs12_data,
            password.encode("utf-8"),
        )
    except ValueError as exc:
        raise CertificateError(f"Error al cargar el archivo PKCS12: {exc}") from exc

    if private_key is None or cert is None:
        raise CertificateError(
            "No se pudo extraer clave privada/certificado desde el archivo PKCS12."
        )

    cargado = CertificadoCargado(
        private_key=private_key,
        certificado=cert,
        adicionales=list(adicionales or []),
    )

    now = timezone.now()
    if now < cert.not_valid_before_utc or now > cargado.vence:
        raise CertificateError(
            f"Certificado vencido. Válido desde {cert.not_valid_before_utc} "
            f"hasta {cargado.vence}"
        )

    if cargado.por_vencer:
        logger.warning(
            "El certificado de la empresa %s vence en %s días (%s).",
            empresa.ruc,
            cargado.dias_restantes,
            cargado.vence,
        )

    return cargado


# =========================
# Helpers XAdES-BES
# =========================


def _c14n(element: etree._Element) -> bytes:
    # C14N inclusivo, igual que las implementaciones xmlsec aceptadas por el SRI
    return etree.tostring(element, method="c14n", exclusive=False, with_comments=False)


def _sha1_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


def _cert_b64(cert: x509.Certificate) -> str:
    return base64.b64encode(cert.public_bytes(Encoding.DER)).decode("ascii")


def _ds(parent: etree._Element, tag: str, **attrs: str) -> etree._Element:
    return etree.SubElement(parent, f"{{{DS_NS}}}{tag}", **attrs)


def _reference(
    signed_info: etree._Element,
    uri: str,
    digest: str,
    enveloped: bool = False,
    tipo: str | None = None,
) -> None:
    attrs = {"URI": uri}
    if tipo:
        attrs["Type"] = tipo
    ref = _ds(signed_info, "Reference", **attrs)
    if enveloped:
        transforms = _ds(ref, "Transforms")
        _ds(transforms, "Transform", Algorithm=ALG_ENVELOPED)
    _ds(ref, "DigestMethod", Algorithm=ALG_SHA1)
    _ds(ref, "DigestValue").text = digest


def _signed_properties(cert: x509.Certificate, signature_id: str) -> etree._Element:
    props = etree.Element(
        f"{{{XADES_NS}}}SignedProperties",
        Id=f"{signature_id}-SignedProperties",
        nsmap={"xades": XADES_NS, "ds": DS_NS},
    )
    sig_props = etree.SubElement(props, f"{{{XADES_NS}}}SignedSignatureProperties")
    etree.SubElement(sig_props, f"{{{XADES_NS}}}SigningTime").text = (
        timezone.now().isoformat()
    )

    cert_node = etree.SubElement(
        etree.SubElement(sig_props, f"{{{XADES_NS}}}SigningCertificate"),
        f"{{{XADES_NS}}}Cert",
    )
    digest = etree.SubElement(cert_node, f"{{{XADES_NS}}}CertDigest")
    _ds(digest, "DigestMethod", Algorithm=ALG_SHA1)
    _ds(digest, "DigestValue").text = _sha1_b64(cert.public_bytes(Encoding.DER))

    issuer_serial = etree.SubElement(cert_node, f"{{{XADES_NS}}}IssuerSerial")
    _ds(issuer_serial, "X509IssuerName").text = cert.issuer.rfc4514_string()
    _ds(issuer_serial, "X509SerialNumber").text = str(cert.serial_number)
    return props


def firmar_xml(empresa: Empresa, xml: str | bytes) -> bytes:
    """
    Firma un comprobante con XAdES-BES (RSA-SHA1, C14N inclusivo) compatible SRI.

    Orden en <ds:Signature>: SignedInfo, SignatureValue, KeyInfo, Object.
    El digest de SignedProperties se calcula sobre el nodo ya insertado y
    re-parseado, para que coincida con la canonicalización que hace el SRI.
    """
    if not xml:
        raise CertificateError("No hay XML para firmar.")

    cargado = cargar_certificado(empresa)
    cert = cargado.certificado

    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        root = etree.fromstring(xml)
    except etree.XMLSyntaxError as exc:
        raise CertificateError(f"XML mal formado al intentar firmar: {exc}") from exc

    node_id = root.get("id") or "comprobante"
    root.set("id", node_id)
    signature_id = f"Signature-{node_id}"

    # Digest del documento antes de insertar la firma (enveloped-signature)
    root_digest = _sha1_b64(_c14n(root))

    signature = etree.Element(
        f"{{{DS_NS}}}Signature",
        Id=signature_id,
        nsmap={"ds": DS_NS, "xades": XADES_NS},
    )
    signed_info = _ds(signature, "SignedInfo")
    _ds(signed_info, "CanonicalizationMethod", Algorithm=ALG_C14N)
    _ds(signed_info, "SignatureMethod", Algorithm=ALG_RSA_SHA1)
    _reference(signed_info, f"#{node_id}", root_digest, enveloped=True)

    signature_value = _ds(signature, "SignatureValue")

    x509_data = _ds(_ds(signature, "KeyInfo"), "X509Data")
    for c in [cert, *cargado.adicionales]:
        _ds(x509_data, "X509Certificate").text = _cert_b64(c)

    qualifying = etree.SubElement(
        _ds(signature, "Object"),
        f"{{{XADES_NS}}}QualifyingProperties",
        Target=f"#{signature_id}",
    )
    props = _signed_properties(cert, signature_id)
    props_id = props.get("Id")
    qualifying.append(props)
    root.append(signature)

    reparsed = etree.fromstring(etree.tostring(root, encoding="UTF-8"))
    props_in_doc = reparsed.find(f".//{{{XADES_NS}}}SignedProperties[@Id='{props_id}']")
    if props_in_doc is None:
        raise CertificateError("No se encontró SignedProperties en el XML firmado.")
    _reference(
        signed_info,
        f"#{props_id}",
        _sha1_b64(_c14n(props_in_doc)),
        tipo=TIPO_SIGNED_PROPERTIES,
    )

    try:
        firma = cargado.private_key.sign(_c14n(signed_info), padding.PKCS1v15(), hashes.SHA1())
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error al firmar XML con XAdES-BES: %s", exc)
        raise CertificateError(f"Error al firmar el XML: {exc}") from exc
    signature_value.text = base64.b64encode(firma).decode("ascii")

    logger.info(
        "XML firmado con XAdES-BES para empresa %s (%s); certificado vence en %s días",
        empresa.razon_social,
        empresa.ruc,
        cargado.dias_restantes,
    )
    return etree.tostring(root, encoding="UTF-8", xml_declaration=True)
