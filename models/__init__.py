"""
Data models for the Kokbok recipe pipeline.

This module contains the canonical recipe shape, taxonomy entries, pipeline
results and meal-plan models. Models are plain dataclasses that map onto the
SQLite schema in database_schema.sql.
"""

from .recipe_models import (
    CanonicalRecipe, IngredientGroup, IngredientLine, ResolvedIngredientLine,
    InstructionGroup, InstructionStep, IngredientReference, StepAssociation
)
from .taxonomy_models import TaxonomyEntry, TaxonomyMatch, TaxonomyStatus, TaxonomyKind
from .scraped_models import (
    ExtractionResult, NormalizationResult, ImportResult, ImageFetchResult, SaveResult
)
from .meal_plan_models import (
    CompactRecipe, MealPlanPreferences, SlotQuota, MealPlanEntry, MealPlanResult
)

__all__ = [
    'CanonicalRecipe',
    'IngredientGroup',
    'IngredientLine',
    'ResolvedIngredientLine',
    'InstructionGroup',
    'InstructionStep',
    'IngredientReference',
    'StepAssociation',
    'TaxonomyEntry',
    'TaxonomyMatch',
    'TaxonomyStatus',
    'TaxonomyKind',
    'ExtractionResult',
    'NormalizationResult',
    'ImportResult',
    'ImageFetchResult',
    'SaveResult',
    'CompactRecipe',
    'MealPlanPreferences',
    'SlotQuota',
    'MealPlanEntry',
    'MealPlanResult'
]
