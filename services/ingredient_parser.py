"""
Free-text ingredient line parsing.

Splits lines such as "ca. 500 g potatis, skalad" into quantity, measurement,
name and form. Quantities stay free text (ranges, fractions, approximations)
with decimal commas converted to dots. Swedish and English unit vocabularies
are recognized case-insensitively.
"""

import re
from dataclasses import dataclass
from typing import Optional

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

SWEDISH_UNITS = {
    # Volume
    'l', 'liter', 'dl', 'cl', 'ml', 'msk', 'tsk', 'krm',
    # Weight
    'g', 'gram', 'hg', 'kg',
    # Pieces
    'st', 'styck', 'klyfta', 'klyftor', 'skiva', 'skivor', 'bit', 'bitar',
    'kvist', 'kvistar', 'blad', 'knippe', 'knippen', 'kruka', 'nypa',
    'droppe', 'droppar',
    # Containers
    'burk', 'burkar', 'påse', 'påsar', 'paket', 'förp', 'förpackning',
    'förpackningar', 'flaska', 'flaskor', 'tub',
}

ENGLISH_UNITS = {
    'cup', 'cups', 'tablespoon', 'tablespoons', 'tbsp', 'teaspoon', 'teaspoons',
    'tsp', 'pint', 'pints', 'quart', 'quarts', 'gallon', 'fl-oz',
    'pound', 'pounds', 'lb', 'lbs', 'ounce', 'ounces', 'oz',
    'clove', 'cloves', 'slice', 'slices', 'piece', 'pieces', 'pinch',
    'can', 'cans', 'package', 'packages', 'bunch', 'sprig', 'sprigs',
}

KNOWN_UNITS = SWEDISH_UNITS | ENGLISH_UNITS

_NUMBER = r'(?:\d+(?:[.,]\d+)?(?:/\d+)?|[½¼¾⅓⅔⅛])'
_QUANTITY = rf'{_NUMBER}(?:\s+\d+/\d+)?(?:\s*[-–]\s*{_NUMBER})?'
_LINE_PATTERN = re.compile(
    rf'^(?P<approx>(?:ca\.?|cirka|about)\s+)?(?P<quantity>{_QUANTITY})(?:\s+|(?=[^\W\d_])|$)(?P<rest>.*)$',
    re.IGNORECASE | re.UNICODE
)


@dataclass
class ParsedIngredient:
    quantity: str
    measurement: str
    name: str
    form: Optional[str] = None
    confidence: str = LOW


def _normalize_quantity(approx: Optional[str], quantity: str) -> str:
    quantity = re.sub(r'(\d),(\d)', r'\1.\2', quantity)
    quantity = re.sub(r'\s*[-–]\s*', '-', quantity)
    if approx:
        return f"{approx.strip()} {quantity}"
    return quantity


def _split_form(text: str):
    """'potatis, skalad' -> ('potatis', 'skalad')"""
    name, sep, form = text.partition(',')
    name = name.strip()
    form = form.strip() if sep else ""
    return name, (form or None)


def match_unit(token: str) -> Optional[str]:
    """Return the lowercased unit if token is a known measurement"""
    candidate = token.lower().rstrip('.')
    return candidate if candidate in KNOWN_UNITS else None


def parse_ingredient(text: str) -> ParsedIngredient:
    """
    Parse one ingredient line.

    Confidence is high when quantity, unit and name are all present, medium
    when either the unit or the name is missing, and low without a quantity.
    """
    line = re.sub(r'\s+', ' ', (text or "")).strip()

    match = _LINE_PATTERN.match(line)
    if not match:
        name, form = _split_form(line)
        return ParsedIngredient(quantity="", measurement="", name=name, form=form, confidence=LOW)

    quantity = _normalize_quantity(match.group('approx'), match.group('quantity'))
    rest = match.group('rest').strip()

    measurement = ""
    if rest:
        first, _, remainder = rest.partition(' ')
        unit = match_unit(first)
        if unit:
            measurement = unit
            rest = remainder.strip()

    name, form = _split_form(rest)

    if measurement and name:
        confidence = HIGH
    else:
        confidence = MEDIUM

    return ParsedIngredient(
        quantity=quantity,
        measurement=measurement,
        name=name,
        form=form,
        confidence=confidence
    )
