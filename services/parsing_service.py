"""
Recipe normalization service for the Kokbok recipe pipeline.

Coerces loosely typed schema.org Recipe descriptions (JSON-LD, microdata,
site handler output) into a CanonicalRecipe. Every polymorphic field has an
explicit ordered list of shape matchers; the first matcher whose predicate
accepts the value extracts it. Values no matcher accepts are dropped with a
warning instead of raising.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from bs4 import BeautifulSoup

from models import (
    CanonicalRecipe, IngredientGroup, IngredientLine, InstructionGroup,
    InstructionStep, NormalizationResult
)
from services.errors import ShapeCoercionWarning
from services.ingredient_parser import parse_ingredient, LOW
from utils import Config, get_logger, parse_duration

logger = get_logger(__name__)


@dataclass(frozen=True)
class ShapeMatcher:
    """One accepted shape of a polymorphic field"""
    name: str
    matches: Callable[[Any], bool]
    extract: Callable[[Any], Any]


def coerce(value: Any, matchers: Tuple[ShapeMatcher, ...]) -> Tuple[Any, Optional[str]]:
    """
    Run value through matchers in order.

    Returns (extracted, matcher_name); (None, None) when no matcher accepts
    the value or the accepting matcher yields nothing usable.
    """
    for matcher in matchers:
        if matcher.matches(value):
            extracted = matcher.extract(value)
            if extracted is None:
                return None, None
            return extracted, matcher.name
    return None, None


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_nonempty_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) > 0


def _has_type(value: Any, type_name: str) -> bool:
    if not isinstance(value, dict):
        return False
    declared = value.get('@type')
    if isinstance(declared, list):
        return type_name in declared
    return declared == type_name


def clean_text(value: Any) -> str:
    """Strip markup and entities from a text field and collapse whitespace"""
    if value is None:
        return ""
    text = str(value)
    if '<' in text or '&' in text:
        text = BeautifulSoup(text, 'html.parser').get_text(' ')
    return re.sub(r'\s+', ' ', text).strip()


def _text_or_none(value: str) -> Optional[str]:
    text = clean_text(value)
    return text or None


def _first_of(items, matchers):
    for item in items:
        extracted, _ = coerce(item, matchers)
        if extracted is not None:
            return extracted
    return None


# Image: "url" | {"url": ...} | ["url", ...] | [{"url": ...}, ...]
_IMAGE_SCALAR_MATCHERS = (
    ShapeMatcher('string', _is_str, lambda v: v.strip() or None),
    ShapeMatcher('object_url', lambda v: _is_dict(v) and 'url' in v,
                 lambda v: str(v['url']).strip() or None if v['url'] else None),
)
IMAGE_MATCHERS = _IMAGE_SCALAR_MATCHERS + (
    ShapeMatcher('list', _is_nonempty_list, lambda v: _first_of(v, _IMAGE_SCALAR_MATCHERS)),
)

# Author: "name" | {"name": ...} | list of those
_AUTHOR_SCALAR_MATCHERS = (
    ShapeMatcher('string', _is_str, _text_or_none),
    ShapeMatcher('object_name', lambda v: _is_dict(v) and 'name' in v,
                 lambda v: _text_or_none(v['name']) if v['name'] else None),
)
AUTHOR_MATCHERS = _AUTHOR_SCALAR_MATCHERS + (
    ShapeMatcher('list', _is_nonempty_list, lambda v: _first_of(v, _AUTHOR_SCALAR_MATCHERS)),
)

_YIELD_PATTERN = re.compile(
    r'(?:ca\.?\s+|cirka\s+|about\s+)?(\d+(?:[.,]\d+)?)(?:\s*[-–]\s*\d+(?:[.,]\d+)?)?\s*(.+)?',
    re.IGNORECASE
)


def _yield_from_string(value: str) -> Optional[Tuple[int, Optional[str]]]:
    match = _YIELD_PATTERN.search(clean_text(value))
    if not match:
        return None
    portions = int(float(match.group(1).replace(',', '.')))
    unit = (match.group(2) or "").strip() or None
    return portions, unit


# Yield: 4 | "ca 30 st" | [4, "4 portioner"]
_YIELD_SCALAR_MATCHERS = (
    ShapeMatcher('number', _is_number, lambda v: (int(v), None)),
    ShapeMatcher('string', _is_str, _yield_from_string),
)
YIELD_MATCHERS = _YIELD_SCALAR_MATCHERS + (
    ShapeMatcher('list', _is_nonempty_list, lambda v: _first_of(v, _YIELD_SCALAR_MATCHERS)),
)

# Durations: "PT1H30M" | 90 (already minutes)
DURATION_MATCHERS = (
    ShapeMatcher('iso8601', _is_str, parse_duration),
    ShapeMatcher('minutes', lambda v: _is_number(v) and v >= 0, lambda v: int(v)),
)

_STEP_NUMBER_PREFIX = re.compile(r'^\s*(?:steg\s+)?\d+\s*[.):]\s+', re.IGNORECASE)


def _step_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = clean_text(value)
    elif isinstance(value, dict):
        raw = value.get('text') or value.get('name')
        text = clean_text(raw) if isinstance(raw, str) else ""
    else:
        return None
    text = _STEP_NUMBER_PREFIX.sub('', text)
    return text or None


def _split_instruction_string(value: str) -> List[Tuple[str, str]]:
    # Line breaks inside HTML strings come from <br> or block elements
    if '<' in value:
        value = BeautifulSoup(value, 'html.parser').get_text('\n')
    items = []
    for line in value.splitlines():
        text = _step_text(line)
        if text:
            items.append(('step', text))
    return items


def _section_items(section: dict) -> List[Tuple[str, str]]:
    items = []
    name = clean_text(section.get('name')) if isinstance(section.get('name'), str) else ""
    if name:
        items.append(('group', name))
    elements = section.get('itemListElement') or []
    if isinstance(elements, dict):
        elements = [elements]
    for element in elements:
        text = _step_text(element)
        if text:
            items.append(('step', text))
    return items


def _single_step(value: Any) -> Optional[List[Tuple[str, str]]]:
    text = _step_text(value)
    return [('step', text)] if text else None


# Instruction elements inside a list, in priority order
INSTRUCTION_ITEM_MATCHERS = (
    ShapeMatcher('section', lambda v: _has_type(v, 'HowToSection'), _section_items),
    ShapeMatcher('step_object', _is_dict, _single_step),
    ShapeMatcher('string', _is_str, _single_step),
)


def _instruction_list(values) -> List[Tuple[str, str]]:
    items = []
    for value in values:
        extracted, _ = coerce(value, INSTRUCTION_ITEM_MATCHERS)
        if extracted:
            items.extend(extracted)
    return items


INSTRUCTION_MATCHERS = (
    ShapeMatcher('string', _is_str, _split_instruction_string),
    ShapeMatcher('section', lambda v: _has_type(v, 'HowToSection'), _section_items),
    ShapeMatcher('step_object', _is_dict, _single_step),
    ShapeMatcher('list', _is_nonempty_list, _instruction_list),
)


def _list_of_strings(values) -> List[str]:
    return [str(v) for v in values if v is not None and not isinstance(v, (dict, list))]


INGREDIENT_MATCHERS = (
    ShapeMatcher('list', _is_nonempty_list, _list_of_strings),
    ShapeMatcher('string', _is_str, lambda v: v.splitlines()),
)

# Cuisine and categories: "Italiensk" | ["Italiensk", "Fransk"]
LABEL_MATCHERS = (
    ShapeMatcher('string', _is_str, lambda v: [part for part in (clean_text(p) for p in v.split(',')) if part]),
    ShapeMatcher('list', _is_nonempty_list,
                 lambda v: [part for part in (clean_text(p) for p in v if isinstance(p, str)) if part]),
)


def is_section_header(text: str) -> bool:
    """Ingredient lists sometimes carry headers such as 'Till såsen:'"""
    text = text.strip()
    return text.endswith(':') and bool(text[:-1].strip()) and len(text) <= 60


def build_instruction_groups(items: List[Tuple[str, str]]) -> List[InstructionGroup]:
    """Group ('group', name) / ('step', text) items; loose steps join the open section"""
    groups = [InstructionGroup(None, [])]
    for kind, value in items:
        if kind == 'group':
            groups.append(InstructionGroup(value, []))
        else:
            groups[-1].steps.append(InstructionStep(text=value))
    return groups


class ParsingService:
    """
    Normalizer for loosely typed recipe descriptions.

    Pure with respect to its input: no I/O, no taxonomy lookups. Entity
    resolution happens later in IngredientService.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    def normalize(self, raw: dict, source_url: Optional[str] = None) -> NormalizationResult:
        """
        Normalize a schema.org Recipe dict into a CanonicalRecipe.

        Args:
            raw: Loosely typed recipe description
            source_url: URL the description was extracted from

        Returns:
            NormalizationResult with the recipe, user-facing warnings and the
            display indices of low-confidence ingredient lines
        """
        diagnostics: List[ShapeCoercionWarning] = []

        def warn(field_name: str, message: str):
            diagnostics.append(ShapeCoercionWarning(field_name, message))
            logger.debug(f"Coercion warning for {field_name}: {message}")

        name = clean_text(raw.get('name'))
        if not name:
            warn('name', 'Receptet saknar namn')

        image_url = self._coerce_field(raw, 'image', IMAGE_MATCHERS, warn)
        author = self._coerce_field(raw, 'author', AUTHOR_MATCHERS, warn)

        prep_time = self._coerce_field(raw, 'prepTime', DURATION_MATCHERS, warn)
        cook_time = self._coerce_field(raw, 'cookTime', DURATION_MATCHERS, warn)
        if cook_time is None:
            cook_time = self._coerce_field(raw, 'totalTime', DURATION_MATCHERS, warn)

        recipe_yield, yield_name = None, None
        coerced_yield = self._coerce_field(raw, 'recipeYield', YIELD_MATCHERS, warn)
        if coerced_yield:
            recipe_yield, yield_name = coerced_yield

        cuisine_labels = self._coerce_field(raw, 'recipeCuisine', LABEL_MATCHERS, warn) or []
        categories = self._coerce_field(raw, 'recipeCategory', LABEL_MATCHERS, warn) or []

        ingredient_groups, low_confidence = self._normalize_ingredients(raw, warn)

        instruction_items = self._coerce_field(raw, 'recipeInstructions', INSTRUCTION_MATCHERS, warn) or []
        instruction_groups = build_instruction_groups(instruction_items)
        if not any(group.steps for group in instruction_groups):
            warn('recipeInstructions', 'Inga instruktioner hittades i receptet')

        recipe = CanonicalRecipe(
            name=name,
            description=clean_text(raw.get('description')),
            author=author,
            cuisine=", ".join(cuisine_labels) or None,
            recipe_yield=recipe_yield,
            recipe_yield_name=yield_name,
            prep_time=prep_time,
            cook_time=cook_time,
            categories=categories,
            ingredient_groups=ingredient_groups,
            instruction_groups=instruction_groups,
            source_url=source_url,
            image_url=image_url
        )

        logger.info(f"Normalized recipe '{recipe.name}': {len(recipe.ingredients)} ingredients, "
                    f"{len(recipe.steps)} steps, {len(diagnostics)} warnings")

        return NormalizationResult(
            recipe=recipe,
            warnings=[w.message for w in diagnostics],
            low_confidence_indices=low_confidence
        )

    def _coerce_field(self, raw: dict, key: str, matchers, warn) -> Any:
        value = raw.get(key)
        if value is None or value == "" or value == []:
            return None

        extracted, matcher_name = coerce(value, matchers)
        if matcher_name is None:
            warn(key, f"Kunde inte tolka fältet {key}: {str(value)[:80]!r}")
            return None
        return extracted

    def _normalize_ingredients(self, raw: dict, warn) -> Tuple[List[IngredientGroup], List[int]]:
        value = raw.get('recipeIngredient')
        key = 'recipeIngredient'
        if not value:
            value = raw.get('ingredients')
            key = 'ingredients'

        lines = self._coerce_field(raw, key, INGREDIENT_MATCHERS, warn) if value else []

        groups = [IngredientGroup(None, [])]
        low_confidence: List[int] = []
        index = 0
        for text in lines or []:
            text = clean_text(text)
            if not text:
                continue

            parsed = parse_ingredient(text)
            if parsed.confidence == LOW and is_section_header(text):
                groups.append(IngredientGroup(text.rstrip(':').strip(), []))
                continue

            if parsed.confidence == LOW:
                warn(key, f'Låg konfidens vid parsning av ingrediens: "{text}"')
                low_confidence.append(index)

            groups[-1].ingredients.append(IngredientLine(
                name=parsed.name,
                quantity=parsed.quantity,
                measurement=parsed.measurement,
                form=parsed.form
            ))
            index += 1

        # Loose lines only precede the first header, so index is display order
        return groups, low_confidence


def get_parsing_service(config: Optional[Config] = None) -> ParsingService:
    """Factory function to get a parsing service instance"""
    return ParsingService(config)
