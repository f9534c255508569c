from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_PLAIN_DECIMAL = re.compile(r'^[-+]?(\d+\.?\d*|\.\d+)$')
_DECIMAL_STEP = Decimal('0.001')
# NUMERIC(7,3) leaves four integer digits.
DECIMAL_LIMIT = Decimal('10000')

# PHP date() letters as stored in the dateformat config key -> strptime/strftime codes.
_PHP_TO_STRFTIME = {
    'd': '%d',
    'j': '%d',
    'm': '%m',
    'n': '%m',
    'Y': '%Y',
    'y': '%y',
    'M': '%b',
    'F': '%B',
    'D': '%a',
    'l': '%A',
    'H': '%H',
    'G': '%H',
    'h': '%I',
    'g': '%I',
    'i': '%M',
    's': '%S',
    'A': '%p',
    'a': '%p',
}


def php_to_strftime(php_format: str) -> str:
    parts: list[str] = []
    escaped = False
    for char in php_format:
        if escaped:
            parts.append('%%' if char == '%' else char)
            escaped = False
        elif char == '\\':
            escaped = True
        elif char in _PHP_TO_STRFTIME:
            parts.append(_PHP_TO_STRFTIME[char])
        elif char == '%':
            parts.append('%%')
        else:
            parts.append(char)
    return ''.join(parts)


def parse_date(raw: str | None, php_format: str) -> date:
    if raw is None:
        raise ValueError('Date value is required')
    try:
        return datetime.strptime(raw.strip(), php_to_strftime(php_format)).date()
    except ValueError as exc:
        raise ValueError(f"'{raw}' does not match date format {php_format}") from exc


def format_date(value: date, php_format: str) -> str:
    return value.strftime(php_to_strftime(php_format))


def parse_decimal(raw: str | None) -> Decimal:
    """Parse a plain signed decimal that fits attribute_values.attribute_decimal (NUMERIC(7,3)).

    Exponents, digit separators and NaN/Infinity are rejected. Extra fractional digits are
    left for the column to round.
    """
    text = (raw or '').strip()
    if not _PLAIN_DECIMAL.match(text):
        raise ValueError(f"'{raw}' is not a decimal number")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"'{raw}' is not a decimal number") from exc
    if abs(value.quantize(_DECIMAL_STEP, rounding=ROUND_HALF_UP)) >= DECIMAL_LIMIT:
        raise ValueError(f"'{raw}' is out of range for a decimal attribute")
    return value


def valid_date(raw: str | None, php_format: str) -> bool:
    try:
        parse_date(raw, php_format)
    except ValueError:
        return False
    return True


def valid_decimal(raw: str | None) -> bool:
    try:
        parse_decimal(raw)
    except ValueError:
        return False
    return True
