# billing/tests/test_workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone

from billing.models import SriErrorLog, SriErrorLogInmutable
from billing.services.sri import workflow
from billing.services.sri.client import (
    ErrorSRI,
    RespuestaAutorizacion,
    RespuestaRecepcion,
    SRIConnectionError,
)
from billing.services.sri.signer import CertificateError
from billing.tests.helpers import DatosSRIMixin, Estado
from billing.utils import validar_clave_acceso

NUMERO_AUTORIZACION = "2110202501179001691900110010010000000011234567811"


def _autorizada(**extra):
    datos = dict(
        autorizado=True,
        estado="AUTORIZADO",
        numero_autorizacion=NUMERO_AUTORIZACION,
        fecha_autorizacion=timezone.now(),
        xml_autorizado="<factura/>",
    )
    datos.update(extra)
    return RespuestaAutorizacion(**datos)


def _con_errores(*codigos, estado="NO AUTORIZADO"):
    return RespuestaAutorizacion(
        autorizado=False,
        estado=estado,
        errores=[ErrorSRI(codigo=c, mensaje=f"Error {c}", informacion_adicional="detalle") for c in codigos],
    )


class WorkflowBase(DatosSRIMixin, TestCase):
    def setUp(self) -> None:
        self.empresa = self.crear_empresa(
            certificado="billing/certificados/firma.p12",
            certificado_password="secreto",
        )
        self.punto = self.crear_punto(self.empresa)

    def factura_pendiente_autorizacion(self):
        factura = self.crear_factura(self.punto, estado=Estado.PENDIENTE_AUTORIZACION)
        self.asignar_clave(factura)
        return factura


# =========================
# GenerateXml
# =========================


class GenerarXmlTests(WorkflowBase):
    def test_borrador_pasa_a_pendiente_firma(self):
        factura = self.crear_factura(self.punto)

        resultado = workflow.generar_xml(factura)

        self.assertTrue(resultado["ok"], resultado)
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_FIRMA)
        self.assertTrue(validar_clave_acceso(factura.clave_acceso))
        self.assertEqual(resultado["clave_acceso"], factura.clave_acceso)
        self.assertTrue(os.path.isfile(factura.xml_path))
        self.assertIn(self.empresa.ruc, factura.xml_path)
        self.assertEqual(factura.clave_acceso[23], self.empresa.ambiente_efectivo)

    def test_usa_ambiente_forzado(self):
        self.empresa.ambiente_forzado = "2"
        self.empresa.save()
        factura = self.crear_factura(self.punto)

        workflow.generar_xml(factura)

        factura.refresh_from_db()
        self.assertEqual(factura.clave_acceso[23], "2")
        self.assertEqual(factura.ambiente, "2")

    def test_estado_autorizado_no_regenera(self):
        factura = self.crear_factura(self.punto, estado=Estado.AUTORIZADO)

        resultado = workflow.generar_xml(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["estado"], Estado.AUTORIZADO)

    def test_punto_inactivo(self):
        self.punto.is_active = False
        self.punto.save()
        factura = self.crear_factura(self.punto)

        resultado = workflow.generar_xml(factura)

        self.assertFalse(resultado["ok"])
        self.assertIn("punto de emisión", resultado["mensaje"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.BORRADOR)

    def test_falla_interna_revierte_y_registra_error(self):
        factura = self.crear_factura(self.punto)

        with patch(
            "billing.services.sri.workflow.build_document_xml",
            side_effect=RuntimeError("disco lleno"),
        ):
            resultado = workflow.generar_xml(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["mensaje"], "Error interno al generar el XML. Intente nuevamente.")
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.BORRADOR)
        self.assertIsNone(factura.clave_acceso)

        log = SriErrorLog.objects.get(invoice=factura)
        self.assertEqual(log.operacion, SriErrorLog.Operacion.GENERAR_XML)
        self.assertIn("disco lleno", log.mensaje)
        self.assertIn("RuntimeError", log.stack_trace)


# =========================
# SignDocument
# =========================


class FirmarDocumentoTests(WorkflowBase):
    def _factura_con_xml(self):
        factura = self.crear_factura(self.punto)
        self.assertTrue(workflow.generar_xml(factura)["ok"])
        return factura

    @patch("billing.services.sri.workflow.firmar_xml", return_value=b"<factura>firmada</factura>")
    def test_firma_pasa_a_pendiente_autorizacion(self, mock_firmar):
        factura = self._factura_con_xml()

        resultado = workflow.firmar_documento(factura)

        self.assertTrue(resultado["ok"], resultado)
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)
        with open(factura.xml_firmado_path, "rb") as f:
            self.assertEqual(f.read(), b"<factura>firmada</factura>")
        mock_firmar.assert_called_once()

    def test_borrador_no_se_firma(self):
        factura = self.crear_factura(self.punto)

        resultado = workflow.firmar_documento(factura)

        self.assertFalse(resultado["ok"])

    def test_sin_certificado(self):
        factura = self._factura_con_xml()
        self.empresa.certificado_password = None
        self.empresa.save()
        factura.refresh_from_db()

        resultado = workflow.firmar_documento(factura)

        self.assertFalse(resultado["ok"])
        self.assertIn("certificado", resultado["mensaje"])

    @patch(
        "billing.services.sri.workflow.firmar_xml",
        side_effect=CertificateError("Certificado vencido."),
    )
    def test_certificado_vencido_registra_error(self, _mock_firmar):
        factura = self._factura_con_xml()

        resultado = workflow.firmar_documento(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["mensaje"], "Certificado vencido.")
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_FIRMA)
        log = SriErrorLog.objects.get(invoice=factura)
        self.assertEqual(log.codigo_error, "CERTIFICATE_ERROR")
        self.assertEqual(log.operacion, SriErrorLog.Operacion.FIRMAR)

    def test_xml_borrado_del_disco(self):
        factura = self._factura_con_xml()
        os.remove(factura.xml_path)

        resultado = workflow.firmar_documento(factura)

        self.assertFalse(resultado["ok"])
        self.assertIn("Regenere", resultado["mensaje"])


# =========================
# SubmitToSRI
# =========================


@patch("billing.services.sri.workflow.firmar_xml", return_value=b"<factura>firmada</factura>")
class EnviarAlSriTests(WorkflowBase):
    def _factura_firmada(self):
        factura = self.crear_factura(self.punto)
        workflow.generar_xml(factura)
        workflow.firmar_documento(factura)
        return factura

    @patch("billing.services.sri.workflow.SRIClient")
    def test_envio_recibido(self, mock_client, _mock_firmar):
        mock_client.return_value.enviar_comprobante.return_value = RespuestaRecepcion(
            ok=True, estado="RECIBIDA"
        )
        factura = self._factura_firmada()

        resultado = workflow.enviar_al_sri(factura)

        self.assertTrue(resultado["ok"], resultado)
        self.assertEqual(resultado["estado_sri"], "RECIBIDA")
        mock_client.return_value.enviar_comprobante.assert_called_once_with(
            b"<factura>firmada</factura>"
        )
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)
        self.assertEqual(factura.mensajes_sri[-1]["origen"], "RECEPCION")

    @patch("billing.services.sri.workflow.SRIClient")
    def test_envio_devuelto_no_cambia_estado(self, mock_client, _mock_firmar):
        mock_client.return_value.enviar_comprobante.return_value = RespuestaRecepcion(
            ok=False,
            estado="DEVUELTA",
            errores=[ErrorSRI(codigo="43", mensaje="CLAVE ACCESO REGISTRADA")],
        )
        factura = self._factura_firmada()

        resultado = workflow.enviar_al_sri(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["mensaje"], "Envío al SRI fallido: 43: CLAVE ACCESO REGISTRADA")
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)

    @patch("billing.services.sri.workflow.SRIClient")
    def test_rechazado_devuelve_motivos_sin_llamar_al_sri(self, mock_client, _mock_firmar):
        factura = self.crear_factura(self.punto, estado=Estado.RECHAZADO)
        SriErrorLog.objects.create(
            empresa=self.empresa,
            invoice=factura,
            operacion=SriErrorLog.Operacion.CONSULTAR_AUTORIZACION,
            codigo_error="CL001",
            mensaje="ARCHIVO NO CUMPLE ESTRUCTURA XML",
        )

        resultado = workflow.enviar_al_sri(factura)

        self.assertFalse(resultado["ok"])
        self.assertIn("rechazado por el SRI", resultado["mensaje"])
        self.assertIn("[CL001] ARCHIVO NO CUMPLE ESTRUCTURA XML", resultado["mensaje"])
        mock_client.assert_not_called()

    @patch("billing.services.sri.workflow.SRIClient")
    def test_rechazado_sin_motivos_registrados_no_se_reenvia(self, mock_client, _mock_firmar):
        factura = self.crear_factura(self.punto, estado=Estado.RECHAZADO)

        resultado = workflow.enviar_al_sri(factura)

        self.assertFalse(resultado["ok"])
        self.assertIn("PENDIENTE_AUTORIZACION", resultado["mensaje"])
        self.assertIn("RECHAZADO", resultado["mensaje"])
        mock_client.assert_not_called()
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.RECHAZADO)

    @patch("billing.services.sri.workflow.SRIClient")
    def test_borrador_no_se_envia(self, mock_client, _mock_firmar):
        factura = self.crear_factura(self.punto)

        resultado = workflow.enviar_al_sri(factura)

        self.assertFalse(resultado["ok"])
        mock_client.assert_not_called()


# =========================
# CheckAuthorization
# =========================


@patch("billing.services.sri.workflow.SRIClient")
class ConsultarAutorizacionTests(WorkflowBase):
    def test_autorizado_guarda_numero(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _autorizada()
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        self.assertTrue(resultado["autorizado"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.AUTORIZADO)
        self.assertEqual(factura.numero_autorizacion, NUMERO_AUTORIZACION)
        self.assertIsNotNone(factura.fecha_autorizacion)
        self.assertEqual(factura.xml_autorizado, "<factura/>")
        mock_client.return_value.consultar_autorizacion.assert_called_once_with(factura.clave_acceso)

    def test_autorizado_sin_fecha_usa_ahora(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _autorizada(
            fecha_autorizacion=None
        )
        factura = self.factura_pendiente_autorizacion()

        workflow.consultar_autorizacion(factura)

        factura.refresh_from_db()
        self.assertIsNotNone(factura.fecha_autorizacion)

    def test_consulta_repetida_es_idempotente(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _autorizada()
        factura = self.factura_pendiente_autorizacion()

        workflow.consultar_autorizacion(factura)
        resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.AUTORIZADO)
        self.assertEqual(factura.numero_autorizacion, NUMERO_AUTORIZACION)

    def test_autorizado_no_pasa_a_rechazado_en_reconsulta(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _autorizada()
        factura = self.factura_pendiente_autorizacion()
        workflow.consultar_autorizacion(factura)

        mock_client.return_value.consultar_autorizacion.return_value = _con_errores("CL001")
        with self.assertLogs("billing.sri", level="WARNING"):
            resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.AUTORIZADO)
        self.assertEqual(factura.numero_autorizacion, NUMERO_AUTORIZACION)
        self.assertFalse(SriErrorLog.objects.filter(invoice=factura).exists())

    def test_respuesta_invalida_no_rechaza(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores(
            "INVALID_RESPONSE", estado="ERROR"
        )
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)
        self.assertFalse(SriErrorLog.objects.filter(invoice=factura).exists())

    def test_error_de_parseo_no_rechaza(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores(
            "PARSE_ERROR", estado="ERROR"
        )
        factura = self.factura_pendiente_autorizacion()

        workflow.consultar_autorizacion(factura)

        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)

    def test_error_legal_rechaza_y_registra(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores("CL001")
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        self.assertFalse(resultado["autorizado"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.RECHAZADO)

        logs = SriErrorLog.objects.filter(invoice=factura)
        self.assertEqual(logs.count(), 1)
        log = logs.get()
        self.assertEqual(log.codigo_error, "CL001")
        self.assertEqual(log.operacion, SriErrorLog.Operacion.CONSULTAR_AUTORIZACION)
        self.assertEqual(log.datos_adicionales, "detalle")
        self.assertEqual(log.empresa, self.empresa)

    def test_un_registro_por_cada_error(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores(
            "39", "INVALID_RESPONSE"
        )
        factura = self.factura_pendiente_autorizacion()

        workflow.consultar_autorizacion(factura)

        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.RECHAZADO)
        self.assertEqual(SriErrorLog.objects.filter(invoice=factura).count(), 2)

    @override_settings(SRI_CODIGOS_TRANSITORIOS=("CL001",))
    def test_codigos_transitorios_configurables(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores("cl001")
        factura = self.factura_pendiente_autorizacion()

        workflow.consultar_autorizacion(factura)

        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)

    def test_en_procesamiento_no_cambia(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = RespuestaAutorizacion(
            autorizado=False, estado="EN PROCESAMIENTO"
        )
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.consultar_autorizacion(factura)

        self.assertTrue(resultado["ok"])
        self.assertEqual(resultado["estado_sri"], "EN PROCESAMIENTO")
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)

    def test_sin_conexion_no_cambia_ni_registra(self, mock_client):
        mock_client.return_value.consultar_autorizacion.side_effect = SRIConnectionError("timeout")
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.consultar_autorizacion(factura)

        self.assertFalse(resultado["ok"])
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)
        self.assertFalse(SriErrorLog.objects.exists())

    def test_borrador_no_se_consulta(self, mock_client):
        factura = self.crear_factura(self.punto)

        resultado = workflow.consultar_autorizacion(factura)

        self.assertFalse(resultado["ok"])
        mock_client.assert_not_called()

    def test_nota_credito_rechazada_se_vincula(self, mock_client):
        mock_client.return_value.consultar_autorizacion.return_value = _con_errores("45")
        factura = self.crear_factura(self.punto, estado=Estado.AUTORIZADO)
        nota = self.crear_nota_credito(factura, estado=Estado.PENDIENTE_AUTORIZACION)
        self.asignar_clave(nota)

        workflow.consultar_autorizacion(nota)

        nota.refresh_from_db()
        self.assertEqual(nota.estado, Estado.RECHAZADO)
        log = SriErrorLog.objects.get(credit_note=nota)
        self.assertIsNone(log.invoice)
        self.assertEqual(log.documento, nota)


# =========================
# GenerateRIDE
# =========================


class GenerarRideTests(WorkflowBase):
    def _factura_autorizada(self):
        factura = self.factura_pendiente_autorizacion()
        factura.estado = Estado.AUTORIZADO
        factura.numero_autorizacion = factura.clave_acceso
        factura.fecha_autorizacion = timezone.now()
        factura.save()
        return factura

    def test_genera_pdf(self):
        factura = self._factura_autorizada()

        resultado = workflow.generar_ride(factura)

        self.assertTrue(resultado["ok"], resultado)
        factura.refresh_from_db()
        self.assertTrue(factura.ride_path.endswith(".pdf"))
        with open(factura.ride_path, "rb") as f:
            self.assertTrue(f.read().startswith(b"%PDF"))
        self.assertEqual(factura.estado, Estado.AUTORIZADO)

    def test_no_autorizado(self):
        factura = self.factura_pendiente_autorizacion()

        resultado = workflow.generar_ride(factura)

        self.assertFalse(resultado["ok"])
        self.assertIsNone(factura.ride_path)

    def test_falla_del_pdf_se_registra(self):
        factura = self._factura_autorizada()

        with patch("billing.services.ride.generar_ride_pdf", side_effect=OSError("sin fuentes")):
            resultado = workflow.generar_ride(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["mensaje"], "Error interno al generar el RIDE. Intente nuevamente.")
        factura.refresh_from_db()
        self.assertIsNone(factura.ride_path)
        self.assertEqual(
            SriErrorLog.objects.get(invoice=factura).operacion,
            SriErrorLog.Operacion.GENERAR_RIDE,
        )


# =========================
# Emisión completa
# =========================


@patch("billing.services.sri.workflow.SRIClient")
@patch("billing.services.sri.workflow.firmar_xml", return_value=b"<factura>firmada</factura>")
class EmitirDocumentoTests(WorkflowBase):
    def test_borrador_hasta_envio(self, _mock_firmar, mock_client):
        mock_client.return_value.enviar_comprobante.return_value = RespuestaRecepcion(
            ok=True, estado="RECIBIDA"
        )
        factura = self.crear_factura(self.punto)

        resultado = workflow.emitir_documento(factura)

        self.assertTrue(resultado["ok"], resultado)
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_AUTORIZACION)
        self.assertTrue(factura.xml_firmado_path)

    def test_se_detiene_en_el_primer_fallo(self, _mock_firmar, mock_client):
        self.empresa.certificado_password = ""
        self.empresa.save()
        factura = self.crear_factura(self.punto)

        resultado = workflow.emitir_documento(factura)

        self.assertFalse(resultado["ok"])
        self.assertEqual(resultado["paso"], "firmar_documento")
        mock_client.assert_not_called()
        factura.refresh_from_db()
        self.assertEqual(factura.estado, Estado.PENDIENTE_FIRMA)

    def test_modelo_por_nombre(self, _mock_firmar, _mock_client):
        self.assertEqual(workflow.modelo_por_nombre("credit_note").COD_DOC, "04")
        with self.assertRaises(workflow.WorkflowError):
            workflow.modelo_por_nombre("retencion")


# =========================
# Invariantes de modelo
# =========================


class InvariantesTests(WorkflowBase):
    def test_clave_de_autorizado_es_inmutable(self):
        factura = self.factura_pendiente_autorizacion()
        factura.estado = Estado.AUTORIZADO
        factura.save()

        factura.clave_acceso = "0" * 49
        with self.assertRaises(ValueError):
            factura.save()

    def test_sri_error_log_es_append_only(self):
        factura = self.crear_factura(self.punto)
        log = SriErrorLog.objects.create(
            empresa=self.empresa,
            invoice=factura,
            operacion=SriErrorLog.Operacion.ENVIAR,
            mensaje="timeout",
        )

        log.mensaje = "otro"
        with self.assertRaises(SriErrorLogInmutable):
            log.save()
        with self.assertRaises(SriErrorLogInmutable):
            log.delete()
