"""
Exception and diagnostic types shared by the pipeline services.

Infrastructure failures are exceptions; content ambiguity is collected as
diagnostics (ShapeCoercionWarning, LowConfidenceMatch) and never raised.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline failures"""


class InvalidSourceError(PipelineError):
    """URL is not http(s) or has no host; raised before any network activity"""


class FetchError(PipelineError):
    """Every attempted transport strategy failed"""


class NoStructuredDataError(PipelineError):
    """Markup contains no schema.org Recipe description"""


class GenerationError(PipelineError):
    """Generation provider failed or returned a structurally invalid response"""


class PersistenceErrorCode(Enum):
    DUPLICATE = "duplicate"
    INVALID_REFERENCE = "invalid_reference"
    NOT_FOUND = "not_found"
    STORAGE_FAILURE = "storage_failure"


PERSISTENCE_MESSAGES = {
    PersistenceErrorCode.DUPLICATE: "Ett recept med samma innehåll finns redan.",
    PersistenceErrorCode.INVALID_REFERENCE: "Receptet refererar till en ingrediens eller enhet som inte finns.",
    PersistenceErrorCode.NOT_FOUND: "Receptet hittades inte.",
    PersistenceErrorCode.STORAGE_FAILURE: "Receptet kunde inte sparas. Försök igen senare.",
}


class PersistenceError(PipelineError):
    """Save contract failure carrying a structured code"""

    def __init__(self, code: PersistenceErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(f"{code.value}: {detail}" if detail else code.value)

    @property
    def user_message(self) -> str:
        return PERSISTENCE_MESSAGES[self.code]


class ShapeCoercionWarning(UserWarning):
    """A polymorphic field could not be coerced; the field was dropped or defaulted"""

    def __init__(self, field_name: str, message: str):
        self.field_name = field_name
        self.message = message
        super().__init__(f"{field_name}: {message}")


@dataclass
class LowConfidenceMatch:
    """A taxonomy lookup that did not clear the acceptance threshold"""
    index: int
    kind: str  # food or unit
    text: str
    best_rank: Optional[float] = None
