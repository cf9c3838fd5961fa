# billing/serializers.py
from __future__ import annotations

from typing import Any, Dict

from rest_framework import serializers

from billing.models import (
    CreditNote,
    CreditNoteLine,
    Empresa,
    Establecimiento,
    Invoice,
    InvoiceLine,
    PuntoEmision,
    SriErrorLog,
)
from billing.services.documentos import crear_factura, crear_nota_credito, validar_comprador
from billing.validators import mensaje_error_ruc


# =========================
# Configuración SRI
# =========================


class EmpresaSerializer(serializers.ModelSerializer):
    """
    Configuración de la empresa emisora (emisor SRI).
    La contraseña del certificado es solo de escritura.
    """

    certificado_nombre = serializers.SerializerMethodField(read_only=True)
    certificado_configurado = serializers.BooleanField(read_only=True)

    class Meta:
        model = Empresa
        fields = [
            "id",
            # Datos fiscales básicos
            "ruc",
            "razon_social",
            "nombre_comercial",
            "direccion_matriz",
            "telefono",
            "email_contacto",
            # Parámetros tributarios SRI
            "contribuyente_especial",
            "obligado_llevar_contabilidad",
            # Ambiente
            "ambiente",
            "ambiente_forzado",
            # Firma electrónica
            "certificado",
            "certificado_password",
            "certificado_nombre",
            "certificado_configurado",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"certificado_password": {"write_only": True}}

    def get_certificado_nombre(self, obj: Empresa) -> str | None:
        if obj.certificado:
            return obj.certificado.name.rsplit("/", 1)[-1]
        return None

    def validate_ruc(self, value: str) -> str:
        mensaje = mensaje_error_ruc(value)
        if mensaje:
            raise serializers.ValidationError(mensaje)
        return value


class EstablecimientoSerializer(serializers.ModelSerializer):
    empresa = serializers.PrimaryKeyRelatedField(queryset=Empresa.objects.all())

    class Meta:
        model = Establecimiento
        fields = [
            "id",
            "empresa",
            "codigo",
            "nombre",
            "direccion",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_codigo(self, value: str) -> str:
        if len(value) != 3 or not value.isdigit() or value == "000":
            raise serializers.ValidationError(
                "El código de establecimiento debe tener 3 dígitos (001-999)."
            )
        return value


class PuntoEmisionSerializer(serializers.ModelSerializer):
    establecimiento = serializers.PrimaryKeyRelatedField(
        queryset=Establecimiento.objects.all()
    )

    class Meta:
        model = PuntoEmision
        fields = [
            "id",
            "establecimiento",
            "codigo",
            "descripcion",
            "secuencial_factura",
            "secuencial_nota_credito",
            "secuencial_nota_debito",
            "secuencial_retencion",
            "is_active",
            "created_at",
            "updated_at",
        ]
        # Los secuenciales solo avanzan al crear comprobantes
        read_only_fields = [
            "id",
            "secuencial_factura",
            "secuencial_nota_credito",
            "secuencial_nota_debito",
            "secuencial_retencion",
            "created_at",
            "updated_at",
        ]

    def validate_codigo(self, value: str) -> str:
        if len(value) != 3 or not value.isdigit() or value == "000":
            raise serializers.ValidationError(
                "El código de punto de emisión debe tener 3 dígitos (001-999)."
            )
        return value


# =========================
# Líneas
# =========================

LINE_FIELDS = [
    "id",
    "codigo",
    "descripcion",
    "cantidad",
    "precio_unitario",
    "descuento",
    "subtotal",
    "iva_codigo_porcentaje",
    "iva_tarifa",
    "iva_valor",
]
LINE_READ_ONLY = ["id", "subtotal", "iva_valor"]


class InvoiceLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceLine
        fields = LINE_FIELDS
        read_only_fields = LINE_READ_ONLY


class CreditNoteLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditNoteLine
        fields = LINE_FIELDS
        read_only_fields = LINE_READ_ONLY


# =========================
# Comprobantes
# =========================

DOCUMENT_FIELDS = [
    "id",
    "empresa",
    "establecimiento",
    "punto_emision",
    "numero",
    "secuencial",
    "fecha_emision",
    "estado",
    "tipo_identificacion_comprador",
    "identificacion_comprador",
    "razon_social_comprador",
    "direccion_comprador",
    "email_comprador",
    "subtotal",
    "iva",
    "total",
    "moneda",
    "ambiente",
    "clave_acceso",
    "numero_autorizacion",
    "fecha_autorizacion",
    "xml_path",
    "xml_firmado_path",
    "ride_path",
    "mensajes_sri",
    "created_at",
    "updated_at",
]

DOCUMENT_READ_ONLY = [
    "id",
    "establecimiento",
    "numero",
    "secuencial",
    "estado",
    "subtotal",
    "iva",
    "total",
    "ambiente",
    "clave_acceso",
    "numero_autorizacion",
    "fecha_autorizacion",
    "xml_path",
    "xml_firmado_path",
    "ride_path",
    "mensajes_sri",
    "created_at",
    "updated_at",
]


class _DocumentoSerializerMixin:
    """
    Validaciones comunes de factura / nota de crédito al crear.
    """

    def _validar_documento(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if self.instance is not None:
            raise serializers.ValidationError(
                "Los comprobantes electrónicos no se modifican por este endpoint."
            )

        empresa = attrs["empresa"]
        punto = attrs["punto_emision"]
        if punto.establecimiento.empresa_id != empresa.pk:
            raise serializers.ValidationError(
                {"punto_emision": "El punto de emisión no pertenece a la empresa."}
            )
        if not punto.is_active or not punto.establecimiento.is_active:
            raise serializers.ValidationError(
                {"punto_emision": "El punto de emisión o su establecimiento no está activo."}
            )

        tipo = attrs.get("tipo_identificacion_comprador")
        if tipo is not None:
            errores = validar_comprador(tipo, attrs.get("identificacion_comprador"))
            if errores:
                raise serializers.ValidationError(errores)

        if not attrs.get("lines"):
            raise serializers.ValidationError({"lines": "Debe incluir al menos una línea."})
        return attrs


class InvoiceSerializer(_DocumentoSerializerMixin, serializers.ModelSerializer):
    lines = InvoiceLineSerializer(many=True)
    numero = serializers.CharField(read_only=True)

    class Meta:
        model = Invoice
        fields = DOCUMENT_FIELDS + [
            "fecha_vencimiento",
            "forma_pago",
            "plazo_pago",
            "observaciones",
            "lines",
        ]
        read_only_fields = DOCUMENT_READ_ONLY

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        return self._validar_documento(attrs)

    def create(self, validated_data: Dict[str, Any]) -> Invoice:
        empresa = validated_data.pop("empresa")
        try:
            return crear_factura(empresa, validated_data)
        except ValueError as exc:
            raise serializers.ValidationError({"detail": str(exc)}) from exc


class CreditNoteSerializer(_DocumentoSerializerMixin, serializers.ModelSerializer):
    lines = CreditNoteLineSerializer(many=True)
    numero = serializers.CharField(read_only=True)

    # Se copian de la factura si no se envían
    tipo_identificacion_comprador = serializers.ChoiceField(
        choices=CreditNote.TIPO_IDENT_CHOICES, required=False
    )
    identificacion_comprador = serializers.CharField(required=False)
    razon_social_comprador = serializers.CharField(required=False)
    num_doc_modificado = serializers.CharField(required=False)
    fecha_emision_doc_sustento = serializers.DateField(required=False)

    class Meta:
        model = CreditNote
        fields = DOCUMENT_FIELDS + [
            "invoice",
            "cod_doc_modificado",
            "num_doc_modificado",
            "fecha_emision_doc_sustento",
            "motivo",
            "valor_modificacion",
            "es_devolucion_fisica",
            "lines",
        ]
        read_only_fields = DOCUMENT_READ_ONLY + ["cod_doc_modificado", "valor_modificacion"]

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs = self._validar_documento(attrs)
        invoice = attrs["invoice"]
        if invoice.empresa_id != attrs["empresa"].pk:
            raise serializers.ValidationError(
                {"invoice": "La factura no pertenece a la empresa."}
            )
        return attrs

    def create(self, validated_data: Dict[str, Any]) -> CreditNote:
        empresa = validated_data.pop("empresa")
        try:
            return crear_nota_credito(empresa, validated_data)
        except ValueError as exc:
            raise serializers.ValidationError({"detail": str(exc)}) from exc


class SriErrorLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = SriErrorLog
        fields = [
            "id",
            "operacion",
            "codigo_error",
            "mensaje",
            "datos_adicionales",
            "ocurrido_en",
            "fue_reintentado",
            "reintento_exitoso",
        ]
        read_only_fields = fields
