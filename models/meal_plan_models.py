"""
Models for AI meal-plan synthesis.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict

from .recipe_models import CanonicalRecipe

ALL_DAYS = [1, 2, 3, 4, 5, 6, 7]


@dataclass
class CompactRecipe:
    """Catalog entry embedded in generation prompts"""
    id: str
    name: str
    categories: List[str] = field(default_factory=list)
    prep_time: Optional[int] = None
    cook_time: Optional[int] = None
    recipe_yield: Optional[int] = None

    @property
    def total_time(self) -> int:
        return (self.prep_time or 0) + (self.cook_time or 0)

    @classmethod
    def from_recipe(cls, recipe: CanonicalRecipe) -> 'CompactRecipe':
        return cls(
            id=str(recipe.id),
            name=recipe.name,
            categories=list(recipe.categories),
            prep_time=recipe.prep_time,
            cook_time=recipe.cook_time,
            recipe_yield=recipe.recipe_yield
        )


@dataclass
class MealPlanPreferences:
    """
    Preference parameters for a weekly plan.

    ``category_weights`` maps category name to a relative weight; categories
    are presented to the model heaviest first. ``days`` uses 1=Monday..7=Sunday.
    """
    meal_types: List[str] = field(default_factory=lambda: ["middag"])
    servings: int = 4
    category_weights: Dict[str, float] = field(default_factory=dict)
    days: List[int] = field(default_factory=lambda: list(ALL_DAYS))
    max_suggestions: int = 3

    def __post_init__(self):
        days = sorted({d for d in (self.days or []) if 1 <= d <= 7})
        self.days = days or list(ALL_DAYS)

    def weighted_categories(self) -> List[str]:
        ranked = sorted(self.category_weights.items(), key=lambda item: (-item[1], item[0]))
        return [name for name, weight in ranked if weight > 0]


@dataclass
class SlotQuota:
    """Exact split of day x meal-type slots into new and existing recipes"""
    total: int
    new: int
    existing: int


@dataclass
class MealPlanEntry:
    day_of_week: int
    meal_type: str
    recipe_id: Optional[str] = None
    suggested_name: Optional[str] = None
    suggested_description: Optional[str] = None
    suggested_recipe: Optional[CanonicalRecipe] = None
    reason: str = ""

    @property
    def is_new_suggestion(self) -> bool:
        return self.recipe_id is None


@dataclass
class MealPlanResult:
    entries: List[MealPlanEntry] = field(default_factory=list)
    summary: str = ""
    quota: Optional[SlotQuota] = None
    warnings: List[str] = field(default_factory=list)
