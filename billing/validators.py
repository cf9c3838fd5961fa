# billing/validators.py
# -*- coding: utf-8 -*-
"""
Validación de identificaciones tributarias de Ecuador:

- Cédula (10 dígitos, módulo 10).
- RUC (13 dígitos): persona natural, sector público (módulo 11 sobre 8
  dígitos) y sociedad privada (módulo 11 sobre 9 dígitos).

Las funciones validar_* nunca lanzan excepción: cualquier entrada mal
formada (None, vacía, con letras) devuelve False.
"""
from __future__ import annotations

import random
from typing import Any, List, Optional

from django.core.exceptions import ValidationError

PROVINCIA_MIN = 1
PROVINCIA_MAX = 24

PESOS_RUC_PUBLICO = [3, 2, 7, 6, 5, 4, 3, 2]
PESOS_RUC_PRIVADO = [4, 3, 2, 7, 6, 5, 4, 3, 2]

TIPO_IDENT_RUC = "04"
TIPO_IDENT_CEDULA = "05"


def _solo_digitos(valor: Any, longitud: int) -> Optional[str]:
    if not isinstance(valor, str):
        return None
    if len(valor) != longitud or not valor.isdigit():
        return None
    # isdigit acepta dígitos unicode (ej. '²'); solo queremos ASCII.
    if not valor.isascii():
        return None
    return valor


def _provincia_valida(valor: str) -> bool:
    return PROVINCIA_MIN <= int(valor[:2]) <= PROVINCIA_MAX


def _digito_cedula(digitos: str) -> int:
    suma = 0
    for i, ch in enumerate(digitos[:9]):
        producto = int(ch) * (2 if i % 2 == 0 else 1)
        if producto > 9:
            producto -= 9
        suma += producto
    residuo = suma % 10
    return 0 if residuo == 0 else 10 - residuo


def _digito_modulo11(digitos: str, pesos: List[int]) -> int:
    suma = sum(int(ch) * peso for ch, peso in zip(digitos, pesos))
    digito = 11 - (suma % 11)
    if digito == 11:
        return 0
    if digito == 10:
        return 1
    return digito


# =========================
# Cédula
# =========================


def validar_cedula(valor: Any) -> bool:
    cedula = _solo_digitos(valor, 10)
    if cedula is None:
        return False
    if not _provincia_valida(cedula):
        return False
    if int(cedula[2]) >= 6:
        return False
    return int(cedula[9]) == _digito_cedula(cedula)


def mensaje_error_cedula(valor: Any) -> str:
    """
    Mensaje legible del problema con la cédula, o "" si es válida.
    """
    if not isinstance(valor, str) or not valor.strip():
        return "La cédula es obligatoria."
    if len(valor) != 10:
        return "La cédula debe tener 10 dígitos."
    if _solo_digitos(valor, 10) is None:
        return "La cédula solo puede contener dígitos."
    if not _provincia_valida(valor):
        return "Código de provincia inválido en la cédula."
    if int(valor[2]) >= 6:
        return "Tercer dígito inválido en la cédula."
    if validar_cedula(valor):
        return ""
    return "Dígito verificador de la cédula inválido."


# =========================
# RUC
# =========================


def validar_ruc(valor: Any) -> bool:
    ruc = _solo_digitos(valor, 13)
    if ruc is None:
        return False

    tercer_digito = int(ruc[2])

    if tercer_digito < 6:
        # Persona natural: cédula + establecimiento 001
        return validar_cedula(ruc[:10]) and ruc[10:] == "001"

    if tercer_digito == 6:
        # Sector público
        if not _provincia_valida(ruc):
            return False
        return int(ruc[8]) == _digito_modulo11(ruc[:8], PESOS_RUC_PUBLICO)

    if tercer_digito == 9:
        # Sociedad privada o extranjera
        if not _provincia_valida(ruc):
            return False
        return int(ruc[9]) == _digito_modulo11(ruc[:9], PESOS_RUC_PRIVADO)

    return False


def mensaje_error_ruc(valor: Any) -> str:
    """
    Mensaje legible del problema con el RUC, o "" si es válido.
    """
    if not isinstance(valor, str) or not valor.strip():
        return "El RUC es obligatorio."
    if len(valor) != 13:
        return "El RUC debe tener 13 dígitos."
    if _solo_digitos(valor, 13) is None:
        return "El RUC solo puede contener dígitos."
    if validar_ruc(valor):
        return ""
    return "Dígito verificador del RUC inválido."


def validar_identificacion(tipo: str, valor: Any) -> bool:
    """
    Valida según el tipo de identificación SRI del comprador.
    Solo RUC (04) y cédula (05) tienen algoritmo; el resto se acepta si no está vacío.
    """
    if tipo == TIPO_IDENT_RUC:
        return validar_ruc(valor)
    if tipo == TIPO_IDENT_CEDULA:
        return validar_cedula(valor)
    return isinstance(valor, str) and bool(valor.strip())


# =========================
# Validadores de campo Django
# =========================


def validate_ruc(value: Any) -> None:
    mensaje = mensaje_error_ruc(value)
    if mensaje:
        raise ValidationError(mensaje, code="ruc_invalido")


# =========================
# Generadores (fixtures / datos de prueba)
# =========================


def generar_cedula_valida(provincia: int = 17) -> str:
    if not PROVINCIA_MIN <= provincia <= PROVINCIA_MAX:
        raise ValueError("La provincia debe estar entre 1 y 24.")
    base = f"{provincia:02d}{random.randint(0, 5)}" + "".join(
        str(random.randint(0, 9)) for _ in range(6)
    )
    return base + str(_digito_cedula(base))


def generar_ruc_valido(provincia: int = 17) -> str:
    return generar_cedula_valida(provincia) + "001"
