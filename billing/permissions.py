# billing/permissions.py
from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

GRUPOS_ADMIN = ["ADMIN", "Admin", "Administrador"]
GRUPOS_EMISORES = GRUPOS_ADMIN + ["VENDEDOR", "FACTURACION"]


def _en_grupos(user, grupos) -> bool:
    return user.groups.filter(name__in=grupos).exists()


class IsCompanyAdmin(BasePermission):
    """
    Operaciones administrativas de configuración SRI (empresa, establecimientos,
    puntos de emisión).

    - user.is_superuser / user.is_staff -> permitido.
    - Usuario en grupo ADMIN -> permitido.
    """

    message = "No tienes permisos de administrador de empresa para esta operación."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.is_superuser or getattr(user, "is_staff", False):
            return True
        return _en_grupos(user, GRUPOS_ADMIN)


class CanEmitDocuments(BasePermission):
    """
    Lectura para cualquier usuario autenticado; creación y comandos SRI
    (generar XML, firmar, enviar, consultar, RIDE) solo para:

    - user.is_superuser / user.is_staff
    - user.has_perm('billing.add_invoice')
    - grupos ADMIN / VENDEDOR / FACTURACION
    """

    message = "No tienes permisos para emitir comprobantes electrónicos."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False

        if request.method in SAFE_METHODS:
            return True

        if user.is_superuser or getattr(user, "is_staff", False):
            return True

        if user.has_perm("billing.add_invoice"):
            return True

        return _en_grupos(user, GRUPOS_EMISORES)
