# billing/utils.py

"""
Clave de acceso SRI (49 dígitos):

- generar_codigo_numerico: código numérico aleatorio de 8 dígitos.
- modulo11: dígito verificador usando el algoritmo del SRI.
- generar_clave_acceso: construye la clave a partir de los datos del comprobante.
- validar_clave_acceso: verificación estructural + dígito verificador.
- descomponer_clave_acceso: separa la clave en sus campos.

Estas funciones NO dependen de Django.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Union


FechaTipo = Union[date, datetime]

LONGITUD_CLAVE_ACCESO = 49
SECUENCIAL_MIN = 1
SECUENCIAL_MAX = 999_999_999
CODIGO_NUMERICO_MIN = 10_000_000
CODIGO_NUMERICO_MAX = 99_999_999
TIPO_EMISION_NORMAL = "1"


def generar_codigo_numerico() -> str:
    """
    Código numérico de 8 dígitos (10000000–99999999) para la clave de acceso.
    """
    return str(random.randint(CODIGO_NUMERICO_MIN, CODIGO_NUMERICO_MAX))


def modulo11(numero: str) -> int:
    """
    Dígito verificador Módulo 11 del SRI.

    - Se toman los dígitos de derecha a izquierda.
    - Se multiplican por los factores 2, 3, 4, 5, 6, 7 (y se repite).
    - DV = 11 - (suma % 11); si DV == 11 -> 0, si DV == 10 -> 1.
    """
    if not numero or not re.fullmatch(r"[0-9]+", numero):
        raise ValueError("El número para módulo 11 debe contener solo dígitos.")

    factores = [2, 3, 4, 5, 6, 7]
    suma = 0
    for i, digito_char in enumerate(reversed(numero)):
        suma += int(digito_char) * factores[i % len(factores)]

    dv = 11 - (suma % 11)
    if dv == 11:
        dv = 0
    elif dv == 10:
        dv = 1
    return dv


def _formatear_fecha_ddMMyyyy(fecha: FechaTipo) -> str:
    if isinstance(fecha, datetime):
        fecha = fecha.date()
    return fecha.strftime("%d%m%Y")


def generar_clave_acceso(
    fecha_emision: FechaTipo,
    tipo_comprobante: str,
    ruc: str,
    ambiente: str,
    establecimiento: str,
    punto_emision: str,
    secuencial: int | str,
    codigo_numerico: Optional[str] = None,
    tipo_emision: str = TIPO_EMISION_NORMAL,
) -> str:
    """
    Genera la clave de acceso SRI de 49 dígitos.

    Estructura:
    - Fecha de emisión (ddmmaaaa)                     -> 8 dígitos
    - Tipo de comprobante (01, 04, 05, 06, 07)        -> 2 dígitos
    - RUC del emisor                                  -> 13 dígitos
    - Ambiente (1=pruebas, 2=producción)              -> 1 dígito
    - Establecimiento                                 -> 3 dígitos
    - Punto de emisión                                -> 3 dígitos
    - Secuencial                                      -> 9 dígitos
    - Código numérico                                 -> 8 dígitos
    - Tipo de emisión (1=normal)                      -> 1 dígito
    - Dígito verificador (Módulo 11)                  -> 1 dígito

    Lanza ValueError si algún dato no cumple el formato.
    """
    tipo_comprobante = str(tipo_comprobante).strip()
    ruc = str(ruc).strip()
    ambiente = str(ambiente).strip()
    establecimiento = str(establecimiento).strip()
    punto_emision = str(punto_emision).strip()
    tipo_emision = str(tipo_emision).strip()

    if fecha_emision is None:
        raise ValueError("fecha_emision es obligatoria.")

    if not re.fullmatch(r"[0-9]{2}", tipo_comprobante):
        raise ValueError("tipo_comprobante debe tener exactamente 2 dígitos.")

    if not re.fullmatch(r"[0-9]{13}", ruc):
        raise ValueError("ruc debe tener exactamente 13 dígitos.")

    if ambiente not in ("1", "2"):
        raise ValueError("ambiente debe ser '1' (pruebas) o '2' (producción).")

    if not re.fullmatch(r"[0-9]{3}", establecimiento):
        raise ValueError("establecimiento debe tener exactamente 3 dígitos.")

    if not re.fullmatch(r"[0-9]{3}", punto_emision):
        raise ValueError("punto_emision debe tener exactamente 3 dígitos.")

    secuencial_str = str(secuencial).strip()
    if not re.fullmatch(r"[0-9]+", secuencial_str):
        raise ValueError("secuencial debe contener solo dígitos.")
    secuencial_int = int(secuencial_str)
    if not SECUENCIAL_MIN <= secuencial_int <= SECUENCIAL_MAX:
        raise ValueError("secuencial debe estar entre 1 y 999999999.")

    if codigo_numerico is None:
        codigo_numerico = generar_codigo_numerico()
    codigo_numerico = str(codigo_numerico).strip()
    if not re.fullmatch(r"[0-9]{8}", codigo_numerico):
        raise ValueError("codigo_numerico debe tener exactamente 8 dígitos.")

    if not re.fullmatch(r"[0-9]", tipo_emision):
        raise ValueError("tipo_emision debe ser un dígito (ej. '1').")

    cuerpo = (
        _formatear_fecha_ddMMyyyy(fecha_emision)
        + tipo_comprobante
        + ruc
        + ambiente
        + establecimiento
        + punto_emision
        + f"{secuencial_int:09d}"
        + codigo_numerico
        + tipo_emision
    )

    clave_acceso = cuerpo + str(modulo11(cuerpo))

    if len(clave_acceso) != LONGITUD_CLAVE_ACCESO:
        raise ValueError(
            f"La clave de acceso debe tener 49 dígitos, pero se generó con {len(clave_acceso)}."
        )

    return clave_acceso


def validar_clave_acceso(clave: Any) -> bool:
    """
    True si la clave tiene 49 dígitos y su dígito verificador es correcto.
    """
    if not isinstance(clave, str) or not re.fullmatch(r"[0-9]{49}", clave):
        return False
    return modulo11(clave[:48]) == int(clave[48])


@dataclass(frozen=True)
class ClaveAcceso:
    valor: str
    fecha_emision: date
    tipo_comprobante: str
    ruc: str
    ambiente: str
    establecimiento: str
    punto_emision: str
    secuencial: int
    codigo_numerico: str
    tipo_emision: str
    digito_verificador: int

    @property
    def numero_comprobante(self) -> str:
        return f"{self.establecimiento}-{self.punto_emision}-{self.secuencial:09d}"


def descomponer_clave_acceso(clave: str) -> ClaveAcceso:
    """
    Separa una clave de acceso válida en sus campos.
    Lanza ValueError si la clave no es válida.
    """
    if not validar_clave_acceso(clave):
        raise ValueError(f"Clave de acceso inválida: {clave!r}")

    try:
        fecha = datetime.strptime(clave[0:8], "%d%m%Y").date()
    except ValueError:
        raise ValueError(f"Fecha inválida en la clave de acceso: {clave[0:8]}") from None

    return ClaveAcceso(
        valor=clave,
        fecha_emision=fecha,
        tipo_comprobante=clave[8:10],
        ruc=clave[10:23],
        ambiente=clave[23],
        establecimiento=clave[24:27],
        punto_emision=clave[27:30],
        secuencial=int(clave[30:39]),
        codigo_numerico=clave[39:47],
        tipo_emision=clave[47],
        digito_verificador=int(clave[48]),
    )
