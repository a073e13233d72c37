"""
Models for source extraction, normalization and the import entry point.

Results carry diagnostics (warnings, low-confidence indices, captured page
text) alongside the payload so callers can decide how to present partial
successes.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from .recipe_models import CanonicalRecipe


@dataclass
class ExtractionResult:
    """
    Outcome of the Source Extractor for one URL.

    ``recipe_data`` is a loosely typed schema.org Recipe description when a
    strategy succeeded. ``page_text`` is captured whenever a rendered page was
    available so an AI fallback can still be offered.
    """
    success: bool
    url: str
    recipe_data: Optional[Dict[str, Any]] = None
    page_text: Optional[str] = None
    strategy: str = ""  # site_handler, structured_data, rendered
    errors: List[str] = field(default_factory=list)

    def add_error(self, error: str, step: str = ""):
        """Add error with optional step context"""
        error_msg = f"[{step}] {error}" if step else error
        self.errors.append(error_msg)


@dataclass
class NormalizationResult:
    recipe: CanonicalRecipe
    warnings: List[str] = field(default_factory=list)
    low_confidence_indices: List[int] = field(default_factory=list)


@dataclass
class ImportResult:
    """
    Result of importing a recipe from a URL or from free text.

    Indices in ``low_confidence_indices`` refer to ingredient lines in display
    order (CanonicalRecipe.ingredients).
    """
    success: bool
    source_url: Optional[str] = None
    data: Optional[CanonicalRecipe] = None
    warnings: List[str] = field(default_factory=list)
    low_confidence_indices: List[int] = field(default_factory=list)
    error: Optional[str] = None
    page_text: Optional[str] = None

    def get_status_summary(self) -> str:
        if self.success and self.data:
            return f"Imported '{self.data.name}' ({len(self.warnings)} warnings)"
        return f"Import failed: {self.error or 'unknown error'}"


@dataclass
class ImageFetchResult:
    success: bool
    image_id: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: int = 0
    error: Optional[str] = None


@dataclass
class SaveResult:
    """Outcome of persisting a recipe through the save contract"""
    success: bool
    recipe_id: Optional[int] = None
    image: Optional[ImageFetchResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
