# billing/management/commands/validar_empresa.py
# -*- coding: utf-8 -*-
"""
Valida la configuración SRI de las empresas emisoras:

- RUC (dígito verificador)
- Establecimientos y puntos de emisión (código SRI de 3 dígitos)
- Certificado digital (.p12), contraseña y vigencia

Uso:

    python manage.py validar_empresa
    python manage.py validar_empresa --empresa=1
"""

from typing import List, Optional

from django.core.management.base import BaseCommand, CommandError

from billing.models import Empresa
from billing.services.sri.signer import CertificateError, cargar_certificado
from billing.validators import mensaje_error_ruc


def _codigo_sri_valido(codigo: str) -> bool:
    codigo = codigo or ""
    return len(codigo) == 3 and codigo.isdigit() and codigo != "000"


class Command(BaseCommand):
    help = "Verifica RUC, establecimientos, puntos de emisión y certificado de cada Empresa."

    def add_arguments(self, parser):
        parser.add_argument(
            "--empresa",
            type=int,
            dest="empresa_id",
            help="ID de Empresa específica a validar.",
        )

    def handle(self, *args, **options):
        empresa_id: Optional[int] = options.get("empresa_id")
        qs = Empresa.objects.prefetch_related("establecimientos__puntos_emision")

        if empresa_id is not None:
            qs = qs.filter(id=empresa_id)
            if not qs.exists():
                raise CommandError(f"No existe Empresa con id={empresa_id}.")

        if not qs.exists():
            raise CommandError("No hay Empresas configuradas en billing.Empresa.")

        total_errores = 0

        for emp in qs:
            self.stdout.write(
                self.style.NOTICE(f"\n▶ Empresa {emp.id} – {emp.razon_social} ({emp.ruc})")
            )
            errores = self._validar(emp)

            if errores:
                total_errores += len(errores)
                for e in errores:
                    self.stdout.write(self.style.ERROR(f"  ✗ {e}"))
            else:
                self.stdout.write(self.style.SUCCESS("  ✓ Configuración SRI correcta."))

        if total_errores:
            raise CommandError(f"Se encontraron {total_errores} problema(s) de configuración SRI.")

        self.stdout.write(self.style.SUCCESS("\nTodas las empresas están correctamente configuradas."))

    def _validar(self, emp: Empresa) -> List[str]:
        errores: List[str] = []

        mensaje = mensaje_error_ruc(emp.ruc)
        if mensaje:
            errores.append(f"RUC: {mensaje}")

        establecimientos = list(emp.establecimientos.all())
        if not establecimientos:
            errores.append("No tiene establecimientos registrados.")

        for estab in establecimientos:
            if not _codigo_sri_valido(estab.codigo):
                errores.append(f"Establecimiento {estab.id}: código SRI inválido {estab.codigo!r}.")
            puntos = list(estab.puntos_emision.all())
            if not puntos:
                errores.append(f"Establecimiento {estab.codigo}: sin puntos de emisión.")
            for punto in puntos:
                if not punto.codigo_valido():
                    errores.append(
                        f"Punto de emisión {punto.id}: código SRI inválido {punto.codigo!r}."
                    )

        try:
            cargado = cargar_certificado(emp)
        except CertificateError as exc:
            errores.append(f"Certificado: {exc}")
        else:
            estilo = self.style.WARNING if cargado.por_vencer else self.style.SUCCESS
            self.stdout.write(
                estilo(f"  Certificado vigente hasta {cargado.vence:%Y-%m-%d} ({cargado.dias_restantes} días).")
            )

        return errores
