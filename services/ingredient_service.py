"""
Ingredient entity resolution for the Kokbok recipe pipeline.

Resolves free-text ingredient names and measurement symbols against the
shared food/unit taxonomy. Lines are looked up concurrently on a bounded
thread pool; results are reassembled strictly in input order.
"""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from models import (
    CanonicalRecipe, IngredientGroup, IngredientLine, ResolvedIngredientLine, TaxonomyMatch
)
from services.database_service import DatabaseService
from services.errors import LowConfidenceMatch, PersistenceError
from utils import Config, get_logger

logger = get_logger(__name__)

MIN_FOOD_NAME_LENGTH = 2


@dataclass
class LineResolution:
    """Outcome for one ingredient line"""
    line: ResolvedIngredientLine
    low_confidence: List[LowConfidenceMatch] = field(default_factory=list)

    @property
    def food_accepted(self) -> bool:
        return not any(m.kind == "food" for m in self.low_confidence)


@dataclass
class ResolutionResult:
    lines: List[ResolvedIngredientLine]
    low_confidence: List[LowConfidenceMatch] = field(default_factory=list)

    @property
    def low_confidence_indices(self) -> List[int]:
        """Indices of lines whose food name was not resolved"""
        return sorted({m.index for m in self.low_confidence if m.kind == "food"})


class IngredientService:
    """
    Entity Resolver for ingredient lines.

    A taxonomy candidate replaces the author's text only when its rank is
    strictly above the configured acceptance threshold; otherwise the text
    is kept verbatim and a LowConfidenceMatch is recorded.
    """

    def __init__(self, database_service: DatabaseService, config: Config):
        self.db = database_service
        self.config = config

    def resolve_food(self, name: str, user_id: Optional[str] = None) -> Optional[TaxonomyMatch]:
        """Top food candidate if it clears the acceptance threshold"""
        food = self._top_food(name, user_id)
        if food and food.rank > self.config.food_acceptance_threshold:
            return food
        return None

    def resolve_unit(self, symbol: str) -> Optional[TaxonomyMatch]:
        """Top unit candidate if it clears the acceptance threshold"""
        unit = self._top_unit(symbol)
        if unit and unit.rank > self.config.unit_acceptance_threshold:
            return unit
        return None

    def _top_food(self, name: str, user_id: Optional[str]) -> Optional[TaxonomyMatch]:
        name = (name or "").strip()
        if len(name) < MIN_FOOD_NAME_LENGTH:
            return None
        candidates = self.db.search_foods(name, limit=1, user_id=user_id)
        return candidates[0] if candidates else None

    def _top_unit(self, symbol: str) -> Optional[TaxonomyMatch]:
        symbol = (symbol or "").strip()
        if not symbol:
            return None
        candidates = self.db.search_units(symbol, limit=1)
        return candidates[0] if candidates else None

    @staticmethod
    def _rank(match: Optional[TaxonomyMatch]) -> Optional[float]:
        return match.rank if match else None

    def resolve_line(self, index: int, line: IngredientLine, user_id: Optional[str] = None) -> LineResolution:
        """
        Resolve one line with read-only lookups. Lookup failures leave the
        line unresolved instead of failing the batch.
        """
        low_confidence: List[LowConfidenceMatch] = []
        name, measurement = line.name, line.measurement
        food_id, unit_id = None, None

        try:
            food = self._top_food(line.name, user_id)
            if food and food.rank > self.config.food_acceptance_threshold:
                name, food_id = food.name, food.id
            elif len(line.name.strip()) >= MIN_FOOD_NAME_LENGTH:
                low_confidence.append(LowConfidenceMatch(index, "food", line.name, self._rank(food)))

            unit = self._top_unit(line.measurement)
            if unit and unit.rank > self.config.unit_acceptance_threshold:
                measurement, unit_id = unit.display_name, unit.id
            elif line.measurement.strip():
                low_confidence.append(LowConfidenceMatch(index, "unit", line.measurement, self._rank(unit)))
        except (PersistenceError, sqlite3.Error) as e:
            logger.warning(f"Lookup failed for ingredient {index} '{line.name}': {e}")
            return LineResolution(
                line=ResolvedIngredientLine.from_line(line),
                low_confidence=[LowConfidenceMatch(index, "food", line.name)]
            )

        resolved = ResolvedIngredientLine.from_line(
            line, name=name, measurement=measurement, food_id=food_id, unit_id=unit_id
        )
        return LineResolution(line=resolved, low_confidence=low_confidence)

    def resolve_lines(self, lines: List[IngredientLine], user_id: Optional[str] = None) -> ResolutionResult:
        """
        Resolve lines concurrently; output order equals input order.
        """
        if not lines:
            return ResolutionResult(lines=[])

        workers = max(1, min(self.config.resolver_max_workers, len(lines)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            resolutions = list(executor.map(
                lambda pair: self.resolve_line(pair[0], pair[1], user_id),
                enumerate(lines)
            ))

        if self.config.create_pending_foods:
            self._create_pending_foods(resolutions, user_id)

        low_confidence = [m for r in resolutions for m in r.low_confidence]
        accepted = sum(1 for r in resolutions if r.food_accepted)
        logger.info(f"Resolved {accepted}/{len(lines)} ingredient names with {workers} workers")

        return ResolutionResult(lines=[r.line for r in resolutions], low_confidence=low_confidence)

    def _create_pending_foods(self, resolutions: List[LineResolution], user_id: Optional[str]):
        """Link unresolved lines to pending foods, sequentially in line order"""
        for resolution in resolutions:
            line = resolution.line
            if resolution.food_accepted or line.food_id is not None:
                continue
            if len(line.name.strip()) < MIN_FOOD_NAME_LENGTH:
                continue
            try:
                line.food_id = self.db.get_or_create_food(
                    line.name, user_id, self.config.duplicate_similarity_threshold
                )
            except (PersistenceError, sqlite3.Error) as e:
                logger.warning(f"Could not create pending food '{line.name}': {e}")

    def resolve_recipe(self, recipe: CanonicalRecipe,
                       user_id: Optional[str] = None) -> Tuple[CanonicalRecipe, ResolutionResult]:
        """Resolve every ingredient of recipe and rebuild its groups in original order"""
        result = self.resolve_lines(recipe.ingredients, user_id)

        resolved_lines = iter(result.lines)
        groups = [
            IngredientGroup(group.name, [next(resolved_lines) for _ in group.ingredients])
            for group in recipe.ingredient_groups
        ]

        resolved = replace(recipe, ingredient_groups=groups)
        return resolved, result


def get_ingredient_service(database_service: DatabaseService, config: Config) -> IngredientService:
    """Factory function to get an ingredient service instance"""
    return IngredientService(database_service, config)
