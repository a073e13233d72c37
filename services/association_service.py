"""
Group-aware ingredient/instruction association.

Determines which ingredient lines each instruction step refers to. The
result is derived on every read and never stored, so edits to a recipe are
reflected immediately. Everything here is pure and deterministic.
"""

import re
from typing import Dict, List, Optional, Tuple

from models import (
    IngredientGroup, IngredientLine, IngredientReference, InstructionGroup, StepAssociation
)
from utils import get_logger, word_similarity

logger = get_logger(__name__)

MIN_NAME_LENGTH = 2
SUBSTRING_MATCH_LENGTH = 4
SIMILARITY_MIN_LENGTH = 3
WORD_SIMILARITY_THRESHOLD = 0.6

# Swedish definite-form endings, longest first
DEFINITE_SUFFIXES = ("erna", "arna", "orna", "na", "en", "et", "n", "t")
GROUP_NAME_PREFIXES = ("till ", "för ")

_LETTER = r'[^\W\d_]'
_WORD = re.compile(r'[^\W_]+')


def _normalize_group_name(name: Optional[str]) -> str:
    text = re.sub(r'\s+', ' ', (name or "")).strip().lower().rstrip(':').strip()
    for prefix in GROUP_NAME_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):].strip()
    return text


def definite_form_equivalent(left: Optional[str], right: Optional[str]) -> bool:
    """
    True when two group names differ only by a Swedish definite ending.

    "Sås" ~ "Såsen", "Pasta" ~ "Pastan", "Grönsaker" ~ "Grönsakerna".
    A leading "till"/"för" is ignored ("Till såsen" ~ "Sås").
    """
    a = _normalize_group_name(left)
    b = _normalize_group_name(right)
    if not a or not b:
        return False
    if a == b:
        return True

    short, long_ = sorted((a, b), key=len)
    if len(short) < MIN_NAME_LENGTH:
        return False
    return any(long_ == short + suffix for suffix in DEFINITE_SUFFIXES)


def _occurrences(name: str, text: str) -> List[Tuple[int, int, float]]:
    needle = name.strip().lower()
    size = len(_WORD.findall(needle))
    if len(needle) < MIN_NAME_LENGTH or size == 0:
        return []

    if len(needle) >= SUBSTRING_MATCH_LENGTH:
        contained = re.compile(re.escape(needle))
    else:
        contained = re.compile(rf'(?<!{_LETTER}){re.escape(needle)}(?!{_LETTER})')

    words = [(m.start(), m.end()) for m in _WORD.finditer(text)]
    found = []
    for first in range(len(words) - size + 1):
        start, end = words[first][0], words[first + size - 1][1]
        window = text[start:end].lower()
        score = word_similarity(needle, window)
        if contained.search(window) or (len(needle) >= SIMILARITY_MIN_LENGTH and score >= WORD_SIMILARITY_THRESHOLD):
            found.append((start, end, score))
    return found


def find_occurrences(name: str, text: str) -> List[Tuple[int, int]]:
    """
    Spans of the words in text that refer to name, case-insensitively.

    A word refers to the name when it contains the name or its trigram word
    similarity is at least 0.6, so inflected forms are found ("palmsocker"
    in "palmsockret", "lök" in "löken"). Names under four characters are
    only contained on letter boundaries ("ägg" does not match "lägg").
    """
    return [(start, end) for start, end, _ in _occurrences(name, text)]


def _shadowed(key: str, occurrence: Tuple[int, int, float],
              occurrences: Dict[str, List[Tuple[int, int, float]]]) -> bool:
    start, end, score = occurrence
    for other, spans in occurrences.items():
        if other == key:
            continue
        for other_start, other_end, other_score in spans:
            if other_start >= end or start >= other_end:
                continue
            if other_score > score or (other_score == score and len(other) > len(key)):
                return True
    return False


def _preference(candidate_group: Optional[str], step_group: Optional[str], index: int) -> Tuple[int, int]:
    if candidate_group and step_group and candidate_group.lower() == step_group.lower():
        tier = 0
    elif candidate_group and step_group and definite_form_equivalent(candidate_group, step_group):
        tier = 1
    elif candidate_group is None:
        tier = 2
    else:
        tier = 3
    return tier, index


def associate_step(text: str, step_group: Optional[str],
                   lines: List[Tuple[int, IngredientLine, Optional[str]]]) -> List[Tuple[int, IngredientLine, Optional[str]]]:
    """
    Ingredient lines referenced by one step, in authoring order.

    Args:
        text: step text
        step_group: name of the instruction group holding the step
        lines: (display index, line, ingredient group name) for every line
    """
    by_name: Dict[str, List[Tuple[int, IngredientLine, Optional[str]]]] = {}
    occurrences: Dict[str, List[Tuple[int, int, float]]] = {}
    for entry in lines:
        key = entry[1].name.strip().lower()
        if len(key) < MIN_NAME_LENGTH:
            continue
        if key not in occurrences:
            occurrences[key] = _occurrences(key, text)
        if occurrences[key]:
            by_name.setdefault(key, []).append(entry)

    chosen = []
    for key, candidates in by_name.items():
        if all(_shadowed(key, occurrence, occurrences) for occurrence in occurrences[key]):
            # e.g. "mjöl" where the word is "mjölken"
            continue

        best = min(candidates, key=lambda c: _preference(c[2], step_group, c[0]))
        chosen.append(best)

    chosen.sort(key=lambda c: c[0])
    return chosen


def associate(ingredient_groups: List[IngredientGroup],
              instruction_groups: List[InstructionGroup]) -> List[StepAssociation]:
    """
    Compute step -> ingredient associations for a whole recipe.

    Returns one StepAssociation per step in display order. Ingredient ids
    fall back to the line's display index when the line is not persisted.
    """
    lines = []
    index = 0
    for group in ingredient_groups:
        for line in group.ingredients:
            lines.append((index, line, group.name))
            index += 1

    associations = []
    step_index = 0
    for group in instruction_groups:
        for step in group.steps:
            matched = associate_step(step.text, group.name, lines)
            associations.append(StepAssociation(
                step_index=step_index,
                text=step.text,
                group_name=group.name,
                ingredients=[
                    IngredientReference(
                        ingredient_id=line.id if line.id is not None else line_index,
                        name=line.name,
                        quantity=line.quantity,
                        measurement=line.measurement,
                        group_name=group_name
                    )
                    for line_index, line, group_name in matched
                ]
            ))
            step_index += 1

    logger.debug(f"Associated {len(associations)} steps with {len(lines)} ingredient lines")
    return associations
