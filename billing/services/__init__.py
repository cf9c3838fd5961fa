# billing/services/__init__.py
"""
Servicios de dominio del módulo de facturación:

- documentos: creación de comprobantes con reserva de secuencial.
- ride: PDF del RIDE.
- sri/: clave de acceso en XML, firma, cliente SOAP y flujo de autorización.
"""
