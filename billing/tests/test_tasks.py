# billing/tests/test_tasks.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from unittest.mock import patch

from django.test import TestCase, override_settings

from billing import tasks
from billing.tests.helpers import RUC_OTRA_EMPRESA, DatosSRIMixin, Estado


def _resultado_consulta(documento, estado, ok=True):
    documento.estado = estado
    return {"ok": ok, "estado": estado}


class VerificarAutorizacionesPendientesTests(DatosSRIMixin, TestCase):
    def setUp(self) -> None:
        self.empresa = self.crear_empresa()
        self.punto = self.crear_punto(self.empresa)
        self.otra_empresa = self.crear_empresa(ruc=RUC_OTRA_EMPRESA)
        self.otro_punto = self.crear_punto(self.otra_empresa)

    def _pendiente(self, punto, secuencial):
        factura = self.crear_factura(punto, estado=Estado.PENDIENTE_AUTORIZACION, secuencial=secuencial)
        self.asignar_clave(factura)
        return factura

    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.consultar_autorizacion")
    def test_recorre_todas_las_empresas_y_clasifica(self, mock_consultar, _sleep):
        autorizada = self._pendiente(self.punto, 1)
        sigue = self._pendiente(self.punto, 2)
        rechazada = self._pendiente(self.otro_punto, 1)
        nota = self.crear_nota_credito(
            self.crear_factura(self.punto, estado=Estado.AUTORIZADO, secuencial=3),
            estado=Estado.PENDIENTE_AUTORIZACION,
        )
        self.asignar_clave(nota)
        # No se consulta
        self.crear_factura(self.punto, estado=Estado.BORRADOR, secuencial=4)

        estados = {
            ("Invoice", autorizada.pk): Estado.AUTORIZADO,
            ("Invoice", sigue.pk): Estado.PENDIENTE_AUTORIZACION,
            ("Invoice", rechazada.pk): Estado.RECHAZADO,
            ("CreditNote", nota.pk): Estado.AUTORIZADO,
        }
        mock_consultar.side_effect = lambda doc: _resultado_consulta(
            doc, estados[(doc.__class__.__name__, doc.pk)]
        )

        resumen = tasks.verificar_autorizaciones_pendientes()

        self.assertEqual(resumen["procesados"], 4)
        self.assertEqual(resumen["exitosos"], 2)
        self.assertEqual(resumen["pendientes"], 1)
        self.assertEqual(resumen["errores"], 1)
        self.assertEqual(resumen["omitidos"], 0)

        # Facturas primero, luego notas de crédito; cada una con su empresa
        llamados = [c.args[0] for c in mock_consultar.call_args_list]
        self.assertEqual(
            [d.__class__.__name__ for d in llamados],
            ["Invoice", "Invoice", "Invoice", "CreditNote"],
        )
        self.assertEqual(llamados[2].empresa, self.otra_empresa)

    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.consultar_autorizacion")
    def test_un_error_no_detiene_el_barrido(self, mock_consultar, _sleep):
        primera = self._pendiente(self.punto, 1)
        segunda = self._pendiente(self.punto, 2)

        def _consultar(doc):
            if doc.pk == primera.pk:
                raise RuntimeError("BD caída")
            return _resultado_consulta(doc, Estado.AUTORIZADO)

        mock_consultar.side_effect = _consultar

        resumen = tasks.verificar_autorizaciones_pendientes()

        self.assertEqual(resumen["errores"], 1)
        self.assertEqual(resumen["exitosos"], 1)
        self.assertEqual(mock_consultar.call_count, 2)
        self.assertEqual(mock_consultar.call_args_list[1].args[0].pk, segunda.pk)

    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.consultar_autorizacion")
    def test_sin_clave_se_omite(self, mock_consultar, _sleep):
        self.crear_factura(self.punto, estado=Estado.PENDIENTE_AUTORIZACION)

        resumen = tasks.verificar_autorizaciones_pendientes()

        self.assertEqual(resumen["omitidos"], 1)
        self.assertEqual(resumen["procesados"], 0)
        mock_consultar.assert_not_called()

    @override_settings(SRI_PAUSA_AUTORIZACIONES=0.5)
    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.consultar_autorizacion")
    def test_pausa_entre_comprobantes(self, mock_consultar, mock_sleep):
        self._pendiente(self.punto, 1)
        self._pendiente(self.punto, 2)
        mock_consultar.side_effect = lambda doc: _resultado_consulta(doc, Estado.AUTORIZADO)

        tasks.verificar_autorizaciones_pendientes()

        self.assertEqual(mock_sleep.call_count, 2)
        mock_sleep.assert_called_with(0.5)

    def test_eliminados_no_se_consultan(self):
        factura = self._pendiente(self.punto, 1)
        factura.is_deleted = True
        factura.save()

        with patch("billing.tasks.consultar_autorizacion") as mock_consultar:
            resumen = tasks.verificar_autorizaciones_pendientes()

        mock_consultar.assert_not_called()
        self.assertEqual(resumen["procesados"], 0)


class GenerarRidesAutorizadosTests(DatosSRIMixin, TestCase):
    def setUp(self) -> None:
        self.empresa = self.crear_empresa()
        self.punto = self.crear_punto(self.empresa)

    def _autorizada(self, secuencial, **extra):
        factura = self.crear_factura(self.punto, estado=Estado.AUTORIZADO, secuencial=secuencial, **extra)
        clave = self.asignar_clave(factura)
        factura.numero_autorizacion = clave
        factura.save()
        return factura

    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.generar_ride")
    def test_solo_autorizados_sin_ride(self, mock_ride, _sleep):
        sin_ride = self._autorizada(1)
        self._autorizada(2, ride_path="/tmp/ya.pdf")
        vacia = self._autorizada(3, ride_path="")
        self.crear_factura(self.punto, estado=Estado.PENDIENTE_AUTORIZACION, secuencial=4)
        mock_ride.return_value = {"ok": True}

        resumen = tasks.generar_rides_autorizados()

        self.assertEqual(resumen["procesados"], 2)
        self.assertEqual(resumen["exitosos"], 2)
        self.assertEqual(
            sorted(c.args[0].pk for c in mock_ride.call_args_list),
            sorted([sin_ride.pk, vacia.pk]),
        )

    @patch("billing.tasks.time.sleep")
    @patch("billing.tasks.generar_ride")
    def test_sin_numero_de_autorizacion_se_omite(self, mock_ride, _sleep):
        factura = self.crear_factura(self.punto, estado=Estado.AUTORIZADO)
        self.asignar_clave(factura)

        resumen = tasks.generar_rides_autorizados()

        self.assertEqual(resumen["omitidos"], 1)
        mock_ride.assert_not_called()

    @patch("billing.tasks.time.sleep")
    def test_genera_el_pdf_real(self, _sleep):
        factura = self._autorizada(1)

        resumen = tasks.generar_rides_autorizados()

        self.assertEqual(resumen["exitosos"], 1)
        factura.refresh_from_db()
        self.assertTrue(factura.ride_path)


class EmitirDocumentoTaskTests(DatosSRIMixin, TestCase):
    def setUp(self) -> None:
        self.empresa = self.crear_empresa()
        self.punto = self.crear_punto(self.empresa)

    @patch("billing.tasks.emitir_documento")
    def test_ejecuta_el_pipeline(self, mock_emitir):
        factura = self.crear_factura(self.punto)
        mock_emitir.return_value = {"ok": True, "estado": Estado.PENDIENTE_AUTORIZACION}

        resultado = tasks.emitir_documento_task.apply(args=("invoice", factura.pk)).get()

        self.assertTrue(resultado["ok"])
        self.assertEqual(mock_emitir.call_args.args[0].pk, factura.pk)

    def test_modelo_desconocido(self):
        resultado = tasks.emitir_documento_task.apply(args=("retencion", 1)).get()
        self.assertFalse(resultado["ok"])

    def test_documento_inexistente(self):
        resultado = tasks.emitir_documento_task.apply(args=("invoice", 999)).get()
        self.assertEqual(resultado["error"], "DocumentoNoExiste")
