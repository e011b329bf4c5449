"""
Domain models for medication search.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def medication_id(name: str) -> str:
    """Stable id for a medication name: ``rxnorm-`` + abs of a 32-bit string hash."""
    h = 0
    for char in name:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return f"rxnorm-{abs(h)}"


class MedicationCategory(BaseModel):
    model_config = ConfigDict(frozen=True)

    broad: str
    specific: str


class MedicationFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_controlled: bool = False
    is_psychotropic: bool = False
    is_narcotic: bool = False
    requires_monitoring: bool = False


class Medication(BaseModel):
    """A searchable medication. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    generic_name: str | None = None
    brand_names: list[str] | None = None
    categories: MedicationCategory | None = None
    flags: MedicationFlags = Field(default_factory=MedicationFlags)

    @classmethod
    def from_name(cls, name: str, **fields) -> "Medication":
        return cls(id=medication_id(name), name=name, **fields)


class MedicationMatch(Medication):
    """A medication as returned by a search, tagged with how it matched."""

    is_starts_with_match: bool = False
    has_single_starts_with_match: bool = False


class RankedResults(BaseModel):
    """
    Ranked matches stored in the search cache.

    ``complete`` is False when the ranking was cut short, in which case the
    entry only answers requests for at most ``len(medications)`` results.
    """

    model_config = ConfigDict(frozen=True)

    medications: list[Medication] = Field(default_factory=list)
    complete: bool = True

    def covers(self, limit: int) -> bool:
        return self.complete or len(self.medications) >= limit


@dataclass(frozen=True)
class Catalog:
    """Deduplicated, alphabetically sorted set of all known medications."""

    medications: tuple[Medication, ...] = ()
    fetched_at: datetime | None = None
    by_id: dict[str, Medication] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "by_id", {med.id: med for med in self.medications})

    def __len__(self) -> int:
        return len(self.medications)

    @property
    def is_empty(self) -> bool:
        return not self.medications

    def get(self, medication_id: str) -> Medication | None:
        return self.by_id.get(medication_id)


class SearchOptions(BaseModel):
    limit: int | None = Field(default=None, ge=1)
    include_generics: bool = True


class SearchQuery(BaseModel):
    """A normalized query plus its options."""

    text: str
    options: SearchOptions = Field(default_factory=SearchOptions)

    @staticmethod
    def normalize(raw: str) -> str:
        return (raw or "").strip().lower()


class ResultSource(str, Enum):
    MEMORY_CACHE = "memory-cache"
    PERSISTENT_CACHE = "persistent-cache"
    CATALOG = "catalog"


class SearchResult(BaseModel):
    medications: list[MedicationMatch] = Field(default_factory=list)
    source: ResultSource
    search_time_ms: float = 0.0
    query: str
    timestamp: datetime = Field(default_factory=datetime.now)
