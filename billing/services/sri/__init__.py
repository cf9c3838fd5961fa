# billing/services/sri/__init__.py
"""
Servicios relacionados con SRI:

- archivos: rutas y escritura de XML / XML firmado / RIDE.
- client: cliente SOAP para Recepción/Autorización.
- signer: firma electrónica XAdES-BES.
- xml_builder: XML de factura (01) y nota de crédito (04).
- workflow: comandos del flujo BORRADOR -> AUTORIZADO / RECHAZADO.
"""
