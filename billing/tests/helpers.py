# billing/tests/helpers.py
# -*- coding: utf-8 -*-
"""
Datos mínimos compartidos por los tests de facturación.
"""
from __future__ import annotations

import datetime as dt
from decimal import Decimal

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from django.core.files.uploadedfile import SimpleUploadedFile
from django.utils import timezone

from billing.models import (
    CreditNote,
    ElectronicDocument,
    Empresa,
    Establecimiento,
    Invoice,
    InvoiceLine,
    PuntoEmision,
)
from billing.utils import generar_clave_acceso

RUC_EMPRESA = "1790016919001"
RUC_OTRA_EMPRESA = "1760001550001"
CEDULA_VALIDA = "1710034065"

Estado = ElectronicDocument.Estado


def generar_p12(password: str = "secreto", dias_validez: int = 365, inicio_dias: int = -1) -> bytes:
    """
    Certificado autofirmado RSA en formato PKCS#12.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    nombre = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "EMPRESA TEST SA")])
    ahora = dt.datetime.now(dt.timezone.utc)
    inicio = ahora + dt.timedelta(days=inicio_dias)
    cert = (
        x509.CertificateBuilder()
        .subject_name(nombre)
        .issuer_name(nombre)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(inicio)
        .not_valid_after(ahora + dt.timedelta(days=dias_validez))
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"test",
        key,
        cert,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


class DatosSRIMixin:
    """
    Crea Empresa / Establecimiento / PuntoEmision y comprobantes mínimos.
    """

    def crear_empresa(self, ruc: str = RUC_EMPRESA, **extra) -> Empresa:
        datos = dict(
            ruc=ruc,
            razon_social="EMPRESA TEST SA",
            nombre_comercial="EMPRESA TEST",
            direccion_matriz="Av. Amazonas N1-23, Quito",
            ambiente=Empresa.AMBIENTE_PRUEBAS,
        )
        datos.update(extra)
        return Empresa.objects.create(**datos)

    def crear_punto(self, empresa: Empresa, codigo_estab: str = "001", codigo: str = "001") -> PuntoEmision:
        establecimiento = Establecimiento.objects.create(
            empresa=empresa,
            codigo=codigo_estab,
            nombre="Matriz",
            direccion="Av. Amazonas N1-23",
        )
        return PuntoEmision.objects.create(
            establecimiento=establecimiento,
            codigo=codigo,
            descripcion=f"Punto {codigo}",
        )

    def configurar_certificado(self, empresa: Empresa, password: str = "secreto", **kwargs) -> None:
        contenido = generar_p12(password=password, **kwargs)
        empresa.certificado = SimpleUploadedFile("firma.p12", contenido)
        empresa.certificado_password = password
        empresa.save()

    def crear_factura(
        self,
        punto: PuntoEmision,
        estado: str = Estado.BORRADOR,
        secuencial: int = 1,
        **extra,
    ) -> Invoice:
        empresa = punto.establecimiento.empresa
        datos = dict(
            empresa=empresa,
            establecimiento=punto.establecimiento,
            punto_emision=punto,
            secuencial=secuencial,
            fecha_emision=timezone.localdate(),
            tipo_identificacion_comprador="05",
            identificacion_comprador=CEDULA_VALIDA,
            razon_social_comprador="Cliente de Prueba",
            direccion_comprador="Quito",
            email_comprador="cliente@example.com",
            subtotal=Decimal("100.00"),
            iva=Decimal("15.00"),
            total=Decimal("115.00"),
            estado=estado,
        )
        datos.update(extra)
        invoice = Invoice.objects.create(**datos)
        InvoiceLine.objects.create(
            invoice=invoice,
            codigo="P001",
            descripcion="Producto de prueba",
            cantidad=Decimal("2"),
            precio_unitario=Decimal("50"),
            subtotal=Decimal("100.00"),
            iva_valor=Decimal("15.00"),
        )
        return invoice

    def crear_nota_credito(
        self,
        invoice: Invoice,
        estado: str = Estado.BORRADOR,
        secuencial: int = 1,
        **extra,
    ) -> CreditNote:
        datos = dict(
            empresa=invoice.empresa,
            establecimiento=invoice.establecimiento,
            punto_emision=invoice.punto_emision,
            invoice=invoice,
            secuencial=secuencial,
            fecha_emision=timezone.localdate(),
            tipo_identificacion_comprador=invoice.tipo_identificacion_comprador,
            identificacion_comprador=invoice.identificacion_comprador,
            razon_social_comprador=invoice.razon_social_comprador,
            num_doc_modificado=invoice.numero,
            fecha_emision_doc_sustento=invoice.fecha_emision,
            motivo="Devolución",
            valor_modificacion=Decimal("11.50"),
            subtotal=Decimal("10.00"),
            iva=Decimal("1.50"),
            total=Decimal("11.50"),
            estado=estado,
        )
        datos.update(extra)
        return CreditNote.objects.create(**datos)

    def asignar_clave(self, documento: ElectronicDocument) -> str:
        documento.clave_acceso = generar_clave_acceso(
            fecha_emision=documento.fecha_emision,
            tipo_comprobante=documento.COD_DOC,
            ruc=documento.empresa.ruc,
            ambiente=documento.empresa.ambiente_efectivo,
            establecimiento=documento.establecimiento.codigo,
            punto_emision=documento.punto_emision.codigo,
            secuencial=documento.secuencial,
            codigo_numerico="12345678",
        )
        documento.save()
        return documento.clave_acceso
