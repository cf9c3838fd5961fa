# billing/viewsets.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from billing import selectors
from billing.filters import CreditNoteFilter, InvoiceFilter
from billing.models import CreditNote, ElectronicDocument, Empresa, Establecimiento, Invoice, PuntoEmision
from billing.pagination import BillingPagination
from billing.permissions import CanEmitDocuments, IsCompanyAdmin
from billing.serializers import (
    CreditNoteSerializer,
    EmpresaSerializer,
    EstablecimientoSerializer,
    InvoiceSerializer,
    PuntoEmisionSerializer,
    SriErrorLogSerializer,
)
from billing.services.sri import workflow

logger = logging.getLogger(__name__)


# =========================
# ViewSets de configuración
# =========================


class EmpresaViewSet(viewsets.ModelViewSet):
    """
    CRUD de empresas emisoras (configuración SRI del tenant).
    """

    queryset = Empresa.objects.all().order_by("razon_social")
    serializer_class = EmpresaSerializer
    permission_classes = [IsCompanyAdmin]


class EstablecimientoViewSet(viewsets.ModelViewSet):
    serializer_class = EstablecimientoSerializer
    permission_classes = [IsCompanyAdmin]

    def get_queryset(self):
        qs = Establecimiento.objects.select_related("empresa").order_by(
            "empresa__razon_social", "codigo"
        )
        empresa_id = self.request.query_params.get("empresa")
        if empresa_id:
            qs = qs.filter(empresa_id=empresa_id)
        return qs


class PuntoEmisionViewSet(viewsets.ModelViewSet):
    serializer_class = PuntoEmisionSerializer
    permission_classes = [IsCompanyAdmin]

    def get_queryset(self):
        qs = PuntoEmision.objects.select_related("establecimiento__empresa").order_by(
            "establecimiento__codigo", "codigo"
        )
        empresa_id = self.request.query_params.get("empresa")
        if empresa_id:
            qs = qs.filter(establecimiento__empresa_id=empresa_id)
        establecimiento_id = self.request.query_params.get("establecimiento")
        if establecimiento_id:
            qs = qs.filter(establecimiento_id=establecimiento_id)
        return qs


# =========================
# Comprobantes electrónicos
# =========================


def _detalle_fallo(resultado: Dict[str, Any]) -> str:
    """
    Texto para 'detail' a partir del resultado fallido de un comando SRI.
    """
    detalle = resultado.get("mensaje") or "La operación SRI no pudo completarse."
    textos: List[str] = []
    for m in resultado.get("mensajes") or []:
        if isinstance(m, dict):
            texto = m.get("detalle") or m.get("mensaje")
            if texto and texto != detalle:
                textos.append(str(texto))
        elif isinstance(m, str):
            textos.append(m)
    if textos:
        detalle = f"{detalle} | " + " | ".join(textos)
    return detalle


class DocumentoSRIViewSetMixin:
    """
    Acciones SRI comunes a facturas y notas de crédito.

    Cada acción ejecuta un comando de billing.services.sri.workflow y
    devuelve el comprobante serializado con el resultado en '_workflow'.
    Resultado fallido -> HTTP 400 con 'detail'.
    """

    model: type[ElectronicDocument]

    def get_queryset(self):
        return (
            selectors.documentos(
                self.model,
                empresa_id=selectors.as_int(self.request.query_params.get("empresa")),
            )
            .prefetch_related("lines")
            .order_by("-fecha_emision", "-id")
        )

    def _ejecutar(self, request, comando: Callable[[ElectronicDocument], Dict[str, Any]]) -> Response:
        documento = self.get_object()
        resultado = comando(documento)

        documento.refresh_from_db()
        data = self.get_serializer(documento).data
        data["_workflow"] = resultado

        if not resultado.get("ok"):
            data["detail"] = _detalle_fallo(resultado)
            return Response(data, status=status.HTTP_400_BAD_REQUEST)
        return Response(data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="generar-xml")
    def generar_xml(self, request, pk: Optional[str] = None):
        return self._ejecutar(request, workflow.generar_xml)

    @action(detail=True, methods=["post"], url_path="firmar")
    def firmar(self, request, pk: Optional[str] = None):
        return self._ejecutar(request, workflow.firmar_documento)

    @action(detail=True, methods=["post"], url_path="enviar-sri")
    def enviar_sri(self, request, pk: Optional[str] = None):
        return self._ejecutar(request, workflow.enviar_al_sri)

    @action(detail=True, methods=["post"], url_path="consultar-autorizacion")
    def consultar_autorizacion(self, request, pk: Optional[str] = None):
        return self._ejecutar(request, workflow.consultar_autorizacion)

    @action(detail=True, methods=["post"], url_path="generar-ride")
    def generar_ride(self, request, pk: Optional[str] = None):
        return self._ejecutar(request, workflow.generar_ride)

    @action(detail=True, methods=["post"], url_path="emitir")
    def emitir(self, request, pk: Optional[str] = None):
        """
        Generar XML + firmar + enviar en un solo paso.
        """
        return self._ejecutar(request, workflow.emitir_documento)

    @action(detail=True, methods=["get"], url_path="errores-sri")
    def errores_sri(self, request, pk: Optional[str] = None):
        documento = self.get_object()
        logs = selectors.errores_sri(documento)
        return Response(SriErrorLogSerializer(logs, many=True).data)


class InvoiceViewSet(
    DocumentoSRIViewSetMixin,
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Facturas electrónicas.

    - list/retrieve/create (estado inicial BORRADOR, secuencial reservado).
    - acciones: generar-xml, firmar, enviar-sri, consultar-autorizacion,
      generar-ride, emitir, errores-sri.
    """

    model = Invoice
    serializer_class = InvoiceSerializer
    pagination_class = BillingPagination
    filterset_class = InvoiceFilter
    permission_classes = [CanEmitDocuments]


class CreditNoteViewSet(
    DocumentoSRIViewSetMixin,
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Notas de crédito electrónicas sobre facturas autorizadas.
    """

    model = CreditNote
    serializer_class = CreditNoteSerializer
    pagination_class = BillingPagination
    filterset_class = CreditNoteFilter
    permission_classes = [CanEmitDocuments]
