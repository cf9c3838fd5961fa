# billing/management/commands/sri_verificar_pendientes.py
# -*- coding: utf-8 -*-
"""
Ejecuta en el proceso actual (sin worker Celery) las tareas periódicas SRI:

    python manage.py sri_verificar_pendientes
    python manage.py sri_verificar_pendientes --rides
"""

from django.core.management.base import BaseCommand

from billing.tasks import generar_rides_autorizados, verificar_autorizaciones_pendientes


class Command(BaseCommand):
    help = "Consulta autorizaciones pendientes en el SRI y opcionalmente genera RIDEs faltantes."

    def add_arguments(self, parser):
        parser.add_argument(
            "--rides",
            action="store_true",
            help="Genera además el RIDE de los comprobantes autorizados sin PDF.",
        )

    def _resumen(self, titulo, contadores):
        estilo = self.style.ERROR if contadores.get("errores") else self.style.SUCCESS
        self.stdout.write(
            estilo(
                f"{titulo}: procesados={contadores['procesados']} "
                f"exitosos={contadores['exitosos']} errores={contadores['errores']} "
                f"pendientes={contadores['pendientes']} omitidos={contadores['omitidos']}"
            )
        )

    def handle(self, *args, **options):
        self._resumen("Autorizaciones", verificar_autorizaciones_pendientes())
        if options.get("rides"):
            self._resumen("RIDEs", generar_rides_autorizados())
