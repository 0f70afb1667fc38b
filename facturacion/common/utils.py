"""
Utilidades numéricas compartidas
"""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

TWO_PLACES = Decimal("0.01")
# Máximo representable en las columnas Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")

_CONSECUTIVE_PATTERN = re.compile(r"^\s*(\d+)\s*(/.*)?$")


def to_decimal(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Convierte a Decimal sin arrastrar errores binarios de float."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Valor numérico inválido: {value}")


def round2(value: Union[Decimal, int, float, str, None]) -> Decimal:
    """Redondea a 2 decimales (HALF_UP), igual que el resto de montos persistidos."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_consecutive(value: Union[int, str, None]) -> Optional[int]:
    """
    Extrae la parte entera de un número consecutivo con formato "<int>[/sufijo]".

    >>> parse_consecutive("12/2025")
    12
    >>> parse_consecutive(7)
    7
    >>> parse_consecutive("A-1") is None
    True
    """
    if value is None:
        return None
    match = _CONSECUTIVE_PATTERN.match(str(value))
    if not match:
        return None
    return int(match.group(1))
