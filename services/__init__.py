"""
Services package for the Kokbok recipe pipeline.

Contains the pipeline stages (extraction, normalization, entity resolution,
association, synthesis), persistence, image download and the import entry
point that wires them together.
"""

from .errors import (
    PipelineError, InvalidSourceError, FetchError, NoStructuredDataError, GenerationError,
    PersistenceError, PersistenceErrorCode, ShapeCoercionWarning, LowConfidenceMatch
)
from .database_service import DatabaseService, get_database_service
from .scraping_service import ScrapingService, get_scraping_service
from .parsing_service import ParsingService, get_parsing_service
from .ingredient_service import IngredientService, get_ingredient_service
from .association_service import associate, definite_form_equivalent
from .ai_service import AIService, LMStudioProvider, GenerationProvider, get_ai_service
from .image_service import ImageService, get_image_service
from .import_service import ImportService, get_import_service

__all__ = [
    'PipelineError',
    'InvalidSourceError',
    'FetchError',
    'NoStructuredDataError',
    'GenerationError',
    'PersistenceError',
    'PersistenceErrorCode',
    'ShapeCoercionWarning',
    'LowConfidenceMatch',
    'DatabaseService',
    'get_database_service',
    'ScrapingService',
    'get_scraping_service',
    'ParsingService',
    'get_parsing_service',
    'IngredientService',
    'get_ingredient_service',
    'associate',
    'definite_form_equivalent',
    'AIService',
    'LMStudioProvider',
    'GenerationProvider',
    'get_ai_service',
    'ImageService',
    'get_image_service',
    'ImportService',
    'get_import_service'
]
