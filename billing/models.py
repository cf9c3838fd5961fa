# billing/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from billing.validators import validate_ruc


class Empresa(models.Model):
    """
    Emisor SRI (tenant).
    Guarda la configuración tributaria, el ambiente y el certificado de firma.
    """

    AMBIENTE_PRUEBAS = "1"
    AMBIENTE_PRODUCCION = "2"
    AMBIENTE_CHOICES = (
        (AMBIENTE_PRUEBAS, "Pruebas"),
        (AMBIENTE_PRODUCCION, "Producción"),
    )

    # ----- Datos obligatorios SRI -----
    ruc = models.CharField(max_length=13, unique=True, validators=[validate_ruc])
    razon_social = models.CharField(max_length=255)
    nombre_comercial = models.CharField(max_length=255, blank=True)
    direccion_matriz = models.CharField(max_length=255, blank=True)
    telefono = models.CharField(max_length=32, blank=True)
    email_contacto = models.EmailField(blank=True)

    contribuyente_especial = models.CharField(
        max_length=64,
        blank=True,
        help_text="Número de resolución de contribuyente especial (opcional).",
    )
    obligado_llevar_contabilidad = models.BooleanField(default=True)

    # ----- Ambiente SRI -----
    ambiente = models.CharField(
        max_length=1,
        choices=AMBIENTE_CHOICES,
        default=AMBIENTE_PRUEBAS,
    )
    ambiente_forzado = models.CharField(
        max_length=1,
        choices=AMBIENTE_CHOICES,
        null=True,
        blank=True,
        help_text="Si se define, tiene prioridad sobre 'ambiente' al enviar al SRI.",
    )

    # ----- Certificado de firma electrónica -----
    certificado = models.FileField(
        upload_to="billing/certificados/",
        null=True,
        blank=True,
        help_text="Archivo .p12/.pfx con el certificado de firma electrónica.",
    )
    certificado_password = models.CharField(max_length=255, null=True, blank=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Empresa emisora"
        verbose_name_plural = "Empresas emisoras"

    def __str__(self) -> str:
        return f"{self.razon_social} ({self.ruc})"

    @property
    def ambiente_efectivo(self) -> str:
        return self.ambiente_forzado or self.ambiente

    @property
    def obligado_contabilidad_str(self) -> str:
        return "SI" if self.obligado_llevar_contabilidad else "NO"

    @property
    def certificado_configurado(self) -> bool:
        return bool(self.certificado) and bool(self.certificado_password)


class Establecimiento(models.Model):
    """
    Establecimiento SRI (3 dígitos) de una empresa.
    """

    empresa = models.ForeignKey(
        Empresa,
        related_name="establecimientos",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(max_length=3, help_text="Código SRI, ej. '001'.")
    nombre = models.CharField(max_length=255, blank=True)
    direccion = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Establecimiento"
        verbose_name_plural = "Establecimientos"
        unique_together = (("empresa", "codigo"),)

    def __str__(self) -> str:
        return f"{self.empresa.ruc} - {self.codigo} - {self.nombre or self.direccion}"


class PuntoEmision(models.Model):
    """
    Punto de emisión SRI asociado a un establecimiento.

    Cada contador guarda el ÚLTIMO secuencial asignado para su tipo de
    comprobante (0 = todavía no se ha emitido ninguno).
    """

    TIPO_FACTURA = "01"
    TIPO_NOTA_CREDITO = "04"
    TIPO_NOTA_DEBITO = "05"
    TIPO_RETENCION = "07"

    CAMPOS_SECUENCIAL = {
        TIPO_FACTURA: "secuencial_factura",
        TIPO_NOTA_CREDITO: "secuencial_nota_credito",
        TIPO_NOTA_DEBITO: "secuencial_nota_debito",
        TIPO_RETENCION: "secuencial_retencion",
    }

    establecimiento = models.ForeignKey(
        Establecimiento,
        related_name="puntos_emision",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(max_length=3, help_text="Código SRI, ej. '001'.")
    descripcion = models.CharField(max_length=255, blank=True)

    secuencial_factura = models.PositiveIntegerField(default=0)
    secuencial_nota_credito = models.PositiveIntegerField(default=0)
    secuencial_nota_debito = models.PositiveIntegerField(default=0)
    secuencial_retencion = models.PositiveIntegerField(default=0)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Punto de emisión"
        verbose_name_plural = "Puntos de emisión"
        unique_together = (("establecimiento", "codigo"),)

    def __str__(self) -> str:
        return (
            f"{self.establecimiento.empresa.ruc} - "
            f"{self.establecimiento.codigo}-{self.codigo}"
        )

    def codigo_valido(self) -> bool:
        codigo = self.codigo or ""
        return len(codigo) == 3 and codigo.isdigit() and 1 <= int(codigo) <= 999

    def secuencial_actual(self, tipo: str) -> int:
        campo = self._campo_secuencial(tipo)
        return getattr(self, campo)

    def siguiente_secuencial(self, tipo: str) -> int:
        """
        Reserva el siguiente secuencial para `tipo` y lo persiste.

        Debe llamarse dentro de transaction.atomic(): la fila se bloquea con
        select_for_update para que dos creaciones concurrentes en el mismo
        punto nunca obtengan el mismo número.
        """
        campo = self._campo_secuencial(tipo)
        bloqueado = PuntoEmision.objects.select_for_update().get(pk=self.pk)
        nuevo = getattr(bloqueado, campo) + 1
        setattr(bloqueado, campo, nuevo)
        bloqueado.save(update_fields=[campo, "updated_at"])
        setattr(self, campo, nuevo)
        return nuevo

    def _campo_secuencial(self, tipo: str) -> str:
        try:
            return self.CAMPOS_SECUENCIAL[tipo]
        except KeyError:
            raise ValueError(f"Tipo de comprobante no soportado: {tipo!r}") from None


class ElectronicDocument(models.Model):
    """
    Base abstracta para comprobantes electrónicos SRI (factura, nota de crédito).
    """

    # Código SRI del comprobante (codDoc); lo define cada modelo concreto.
    COD_DOC = ""

    class Estado(models.TextChoices):
        BORRADOR = "BORRADOR", "Borrador"
        PENDIENTE_FIRMA = "PENDIENTE_FIRMA", "Pendiente de firma"
        PENDIENTE_AUTORIZACION = "PENDIENTE_AUTORIZACION", "Pendiente de autorización"
        AUTORIZADO = "AUTORIZADO", "Autorizado"
        RECHAZADO = "RECHAZADO", "Rechazado"
        # Estados comerciales (solo facturas, fuera del flujo SRI)
        PAGADO = "PAGADO", "Pagado"
        ENVIADO = "ENVIADO", "Enviado al cliente"
        ANULADO = "ANULADO", "Anulado"

    TIPO_IDENT_CHOICES = (
        ("04", "RUC"),
        ("05", "Cédula"),
        ("06", "Pasaporte"),
        ("07", "Consumidor final"),
        ("08", "Identificación del exterior"),
    )

    estado = models.CharField(
        max_length=32,
        choices=Estado.choices,
        default=Estado.BORRADOR,
        db_index=True,
    )

    secuencial = models.PositiveIntegerField()
    fecha_emision = models.DateField(default=timezone.localdate)

    # Comprador (snapshot)
    tipo_identificacion_comprador = models.CharField(max_length=2, choices=TIPO_IDENT_CHOICES)
    identificacion_comprador = models.CharField(max_length=20)
    razon_social_comprador = models.CharField(max_length=255)
    direccion_comprador = models.CharField(max_length=255, blank=True)
    email_comprador = models.EmailField(blank=True)

    # Totales
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    iva = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    moneda = models.CharField(max_length=10, default="USD")

    # SRI
    ambiente = models.CharField(
        max_length=1,
        choices=Empresa.AMBIENTE_CHOICES,
        default=Empresa.AMBIENTE_PRUEBAS,
    )
    clave_acceso = models.CharField(max_length=49, unique=True, null=True, blank=True)
    numero_autorizacion = models.CharField(max_length=49, null=True, blank=True)
    fecha_autorizacion = models.DateTimeField(null=True, blank=True)
    xml_autorizado = models.TextField(null=True, blank=True)

    # Archivos (rutas opacas en disco)
    xml_path = models.CharField(max_length=500, null=True, blank=True)
    xml_firmado_path = models.CharField(max_length=500, null=True, blank=True)
    ride_path = models.CharField(max_length=500, null=True, blank=True)

    mensajes_sri = models.JSONField(default=list, blank=True)

    is_deleted = models.BooleanField(default=False, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        # La clave de acceso de un comprobante AUTORIZADO no puede cambiar.
        if self.pk:
            anterior = (
                type(self)
                .objects.filter(pk=self.pk)
                .values_list("estado", "clave_acceso")
                .first()
            )
            if anterior and anterior[0] == self.Estado.AUTORIZADO and anterior[1]:
                if self.clave_acceso != anterior[1]:
                    raise ValueError(
                        "La clave de acceso de un comprobante autorizado es inmutable."
                    )
        super().save(*args, **kwargs)

    @property
    def numero(self) -> str:
        """
        Representación 'EEE-PPP-#########'.
        """
        return (
            f"{self.establecimiento.codigo}-"
            f"{self.punto_emision.codigo}-"
            f"{int(self.secuencial or 0):09d}"
        )


class Invoice(ElectronicDocument):
    """
    Factura electrónica SRI.
    """

    COD_DOC = "01"

    FORMA_PAGO_CHOICES = (
        ("01", "Sin utilización del sistema financiero"),
        ("16", "Tarjeta de débito"),
        ("19", "Tarjeta de crédito"),
        ("20", "Otros con utilización del sistema financiero"),
    )

    empresa = models.ForeignKey(Empresa, related_name="invoices", on_delete=models.PROTECT)
    establecimiento = models.ForeignKey(
        Establecimiento, related_name="invoices", on_delete=models.PROTECT
    )
    punto_emision = models.ForeignKey(
        PuntoEmision, related_name="invoices", on_delete=models.PROTECT
    )

    fecha_vencimiento = models.DateField(null=True, blank=True)
    forma_pago = models.CharField(max_length=2, choices=FORMA_PAGO_CHOICES, default="01")
    plazo_pago = models.PositiveIntegerField(default=0, help_text="Plazo en días.")
    observaciones = models.TextField(blank=True)

    class Meta:
        verbose_name = "Factura electrónica"
        verbose_name_plural = "Facturas electrónicas"
        unique_together = (("punto_emision", "secuencial"),)
        indexes = [
            models.Index(fields=["empresa", "estado"], name="inv_emp_estado_idx"),
            models.Index(fields=["empresa", "fecha_emision"], name="inv_emp_fecha_idx"),
        ]

    def __str__(self) -> str:
        return f"Factura {self.numero} - {self.razon_social_comprador}"


class CreditNote(ElectronicDocument):
    """
    Nota de crédito electrónica SRI.
    """

    COD_DOC = "04"

    empresa = models.ForeignKey(Empresa, related_name="credit_notes", on_delete=models.PROTECT)
    establecimiento = models.ForeignKey(
        Establecimiento, related_name="credit_notes", on_delete=models.PROTECT
    )
    punto_emision = models.ForeignKey(
        PuntoEmision, related_name="credit_notes", on_delete=models.PROTECT
    )

    invoice = models.ForeignKey(
        Invoice,
        related_name="credit_notes",
        on_delete=models.PROTECT,
        help_text="Factura que se modifica.",
    )
    cod_doc_modificado = models.CharField(max_length=2, default="01")
    num_doc_modificado = models.CharField(max_length=17, help_text="'EEE-PPP-#########'.")
    fecha_emision_doc_sustento = models.DateField()
    motivo = models.CharField(max_length=300)
    valor_modificacion = models.DecimalField(max_digits=14, decimal_places=2)
    es_devolucion_fisica = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Nota de crédito electrónica"
        verbose_name_plural = "Notas de crédito electrónicas"
        unique_together = (("punto_emision", "secuencial"),)
        indexes = [
            models.Index(fields=["empresa", "estado"], name="nc_emp_estado_idx"),
            models.Index(fields=["empresa", "fecha_emision"], name="nc_emp_fecha_idx"),
        ]

    def __str__(self) -> str:
        return f"Nota de crédito {self.numero} - {self.razon_social_comprador}"


class DocumentLine(models.Model):
    """
    Línea de detalle con su IVA (compartida por factura y nota de crédito).
    """

    codigo = models.CharField(max_length=25)
    descripcion = models.CharField(max_length=300)
    cantidad = models.DecimalField(max_digits=14, decimal_places=6)
    precio_unitario = models.DecimalField(max_digits=14, decimal_places=6)
    descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    subtotal = models.DecimalField(max_digits=14, decimal_places=2)

    # IVA SRI: codigo=2, codigo_porcentaje según tabla (4 = 15%, 0 = 0%)
    iva_codigo_porcentaje = models.CharField(max_length=2, default="4")
    iva_tarifa = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("15.00"))
    iva_valor = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"{self.descripcion} x {self.cantidad}"


class InvoiceLine(DocumentLine):
    invoice = models.ForeignKey(Invoice, related_name="lines", on_delete=models.CASCADE)

    class Meta:
        verbose_name = "Línea de factura"
        verbose_name_plural = "Líneas de factura"


class CreditNoteLine(DocumentLine):
    credit_note = models.ForeignKey(CreditNote, related_name="lines", on_delete=models.CASCADE)

    class Meta:
        verbose_name = "Línea de nota de crédito"
        verbose_name_plural = "Líneas de nota de crédito"


class SriErrorLogInmutable(Exception):
    """Los registros de SriErrorLog no se modifican ni se eliminan."""


class SriErrorLog(models.Model):
    """
    Bitácora append-only de errores en operaciones SRI.
    """

    class Operacion(models.TextChoices):
        GENERAR_XML = "GenerateXml", "Generar XML"
        FIRMAR = "SignDocument", "Firmar"
        ENVIAR = "SubmitToSRI", "Enviar al SRI"
        CONSULTAR_AUTORIZACION = "CheckAuthorization", "Consultar autorización"
        GENERAR_RIDE = "GenerateRIDE", "Generar RIDE"

    empresa = models.ForeignKey(Empresa, related_name="sri_error_logs", on_delete=models.PROTECT)
    invoice = models.ForeignKey(
        Invoice,
        related_name="sri_error_logs",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )
    credit_note = models.ForeignKey(
        CreditNote,
        related_name="sri_error_logs",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
    )

    operacion = models.CharField(max_length=32, choices=Operacion.choices)
    codigo_error = models.CharField(max_length=64, null=True, blank=True)
    mensaje = models.TextField()
    stack_trace = models.TextField(null=True, blank=True)
    datos_adicionales = models.TextField(null=True, blank=True)
    ocurrido_en = models.DateTimeField(default=timezone.now, db_index=True)
    fue_reintentado = models.BooleanField(default=False)
    reintento_exitoso = models.BooleanField(null=True, blank=True)

    class Meta:
        verbose_name = "Error SRI"
        verbose_name_plural = "Errores SRI"
        ordering = ("ocurrido_en", "id")

    def __str__(self) -> str:
        return f"[{self.codigo_error or '-'}] {self.operacion}: {self.mensaje[:80]}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise SriErrorLogInmutable("SriErrorLog es de solo inserción.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise SriErrorLogInmutable("SriErrorLog no se puede eliminar.")

    @property
    def documento(self) -> Invoice | CreditNote | None:
        return self.invoice or self.credit_note
