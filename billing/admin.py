# billing/admin.py
from __future__ import annotations

from django.contrib import admin

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

SRI_READONLY = (
    "secuencial",
    "clave_acceso",
    "numero_autorizacion",
    "fecha_autorizacion",
    "xml_path",
    "xml_firmado_path",
    "ride_path",
    "mensajes_sri",
    "created_at",
    "updated_at",
)


@admin.register(Empresa)
class EmpresaAdmin(admin.ModelAdmin):
    list_display = ("ruc", "razon_social", "ambiente", "ambiente_forzado", "is_active")
    list_filter = ("ambiente", "ambiente_forzado", "is_active")
    search_fields = ("ruc", "razon_social", "nombre_comercial")
    readonly_fields = ("created_at", "updated_at")
    fieldsets = (
        (
            "Datos tributarios",
            {
                "fields": (
                    "ruc",
                    "razon_social",
                    "nombre_comercial",
                    "direccion_matriz",
                    "contribuyente_especial",
                    "obligado_llevar_contabilidad",
                    "is_active",
                )
            },
        ),
        ("Contacto", {"fields": ("telefono", "email_contacto")}),
        ("Ambiente SRI", {"fields": ("ambiente", "ambiente_forzado")}),
        ("Certificado de firma", {"fields": ("certificado", "certificado_password")}),
        ("Auditoría", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(Establecimiento)
class EstablecimientoAdmin(admin.ModelAdmin):
    list_display = ("empresa", "codigo", "nombre", "is_active")
    list_filter = ("empresa", "is_active")
    search_fields = ("codigo", "nombre", "empresa__ruc")


@admin.register(PuntoEmision)
class PuntoEmisionAdmin(admin.ModelAdmin):
    list_display = (
        "establecimiento",
        "codigo",
        "secuencial_factura",
        "secuencial_nota_credito",
        "is_active",
    )
    list_filter = ("establecimiento__empresa", "is_active")
    # Los secuenciales solo los avanza la creación de comprobantes
    readonly_fields = (
        "secuencial_factura",
        "secuencial_nota_credito",
        "secuencial_nota_debito",
        "secuencial_retencion",
    )


class InvoiceLineInline(admin.TabularInline):
    model = InvoiceLine
    extra = 0
    readonly_fields = ("subtotal", "iva_valor")


class CreditNoteLineInline(admin.TabularInline):
    model = CreditNoteLine
    extra = 0
    readonly_fields = ("subtotal", "iva_valor")


class DocumentoAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "empresa",
        "numero",
        "fecha_emision",
        "razon_social_comprador",
        "total",
        "estado",
    )
    list_filter = ("empresa", "estado", "fecha_emision", "is_deleted")
    search_fields = (
        "clave_acceso",
        "numero_autorizacion",
        "identificacion_comprador",
        "razon_social_comprador",
    )
    readonly_fields = SRI_READONLY
    date_hierarchy = "fecha_emision"

    def has_delete_permission(self, request, obj=None):
        # Se usa is_deleted (borrado lógico)
        return False


@admin.register(Invoice)
class InvoiceAdmin(DocumentoAdmin):
    inlines = [InvoiceLineInline]


@admin.register(CreditNote)
class CreditNoteAdmin(DocumentoAdmin):
    inlines = [CreditNoteLineInline]


@admin.register(SriErrorLog)
class SriErrorLogAdmin(admin.ModelAdmin):
    list_display = ("ocurrido_en", "empresa", "operacion", "codigo_error", "mensaje")
    list_filter = ("operacion", "empresa")
    search_fields = ("codigo_error", "mensaje")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
