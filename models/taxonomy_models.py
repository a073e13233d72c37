"""
Shared ingredient taxonomy models (foods and units).

Entries start as pending when created from imports and are promoted by an
administrator outside this pipeline. Pending entries are visible only to
their creator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class TaxonomyStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TaxonomyKind(Enum):
    FOOD = "food"
    UNIT = "unit"


@dataclass
class TaxonomyEntry:
    """A food or unit row in the shared taxonomy"""
    id: int
    name: str
    kind: TaxonomyKind = TaxonomyKind.FOOD
    status: TaxonomyStatus = TaxonomyStatus.APPROVED
    created_by: Optional[str] = None
    plural: Optional[str] = None
    abbreviation: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def is_visible_to(self, user_id: Optional[str]) -> bool:
        if self.status == TaxonomyStatus.APPROVED:
            return True
        return self.status == TaxonomyStatus.PENDING and user_id is not None and self.created_by == user_id


@dataclass
class TaxonomyMatch:
    """Ranked search hit; rank is in [0, 1]"""
    id: int
    name: str
    rank: float
    status: TaxonomyStatus = TaxonomyStatus.APPROVED
    abbreviation: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Units prefer their abbreviation, foods their canonical name"""
        return self.abbreviation or self.name
