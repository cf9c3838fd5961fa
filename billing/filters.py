# billing/filters.py
from __future__ import annotations

import django_filters
from django.db.models import Q

from billing.models import CreditNote, Empresa, Invoice


class DocumentoFilter(django_filters.FilterSet):
    """
    Filtros comunes para listar comprobantes electrónicos.

    - q: búsqueda por clave de acceso, número de autorización, identificación
      o razón social del comprador.
    - fecha_desde / fecha_hasta: por fecha_emision.
    - estado: estado SRI del comprobante.
    - empresa: empresa emisora.
    - monto_min / monto_max: rango de total.
    """

    q = django_filters.CharFilter(method="filter_q", label="Búsqueda general")
    fecha_desde = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="gte")
    fecha_hasta = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="lte")
    estado = django_filters.CharFilter(field_name="estado", lookup_expr="iexact")
    empresa = django_filters.ModelChoiceFilter(queryset=Empresa.objects.all())
    monto_min = django_filters.NumberFilter(field_name="total", lookup_expr="gte")
    monto_max = django_filters.NumberFilter(field_name="total", lookup_expr="lte")

    def filter_q(self, queryset, name, value):
        if not value:
            return queryset
        value = value.strip()
        return queryset.filter(
            Q(clave_acceso__icontains=value)
            | Q(numero_autorizacion__icontains=value)
            | Q(identificacion_comprador__icontains=value)
            | Q(razon_social_comprador__icontains=value)
        )


class InvoiceFilter(DocumentoFilter):
    class Meta:
        model = Invoice
        fields = ["q", "fecha_desde", "fecha_hasta", "estado", "empresa", "monto_min", "monto_max"]


class CreditNoteFilter(DocumentoFilter):
    invoice = django_filters.NumberFilter(field_name="invoice_id")

    class Meta:
        model = CreditNote
        fields = [
            "q",
            "fecha_desde",
            "fecha_hasta",
            "estado",
            "empresa",
            "invoice",
            "monto_min",
            "monto_max",
        ]
