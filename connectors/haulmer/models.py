"""Haulmer registry data models.

Resource descriptors and raw payloads exchanged with the DTE registry.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    """Document families published by the registry."""
    SALES = "sales"
    PURCHASES = "purchases"

    @property
    def segment(self) -> str:
        """Path segment used by the registry."""
        return "ventas" if self is DocumentType.SALES else "compras"

    @property
    def count_field(self) -> str:
        """Field holding the document count in period listings."""
        return "emitidos" if self is DocumentType.SALES else "recibidos"

    @classmethod
    def parse(cls, value: str) -> "DocumentType":
        """Accept the enum value or the registry segment name."""
        normalized = str(value).strip().lower()
        for member in cls:
            if normalized in (member.value, member.segment):
                return member
        raise ValueError(f"Unknown document type: {value!r}")


class ResourceKind(str, Enum):
    EXPORT = "export"
    PERIODS = "periods"


@dataclass(frozen=True)
class ResourceDescriptor:
    """Identifies one registry resource for one tenant."""
    doc_type: DocumentType
    period: Optional[str] = None
    kind: ResourceKind = ResourceKind.EXPORT

    @property
    def unit_id(self) -> str:
        return f"{self.doc_type.value}/{self.period or '-'}"


@dataclass(frozen=True)
class RawPayload:
    """Undecoded response body of a registry fetch."""
    text: str
    url: str

    @property
    def size(self) -> int:
        return len(self.text)


class PeriodEntry(BaseModel):
    """One entry of a period listing envelope."""
    periodo: int
    emitidos: int = 0
    recibidos: int = 0


class PeriodListing(BaseModel):
    """Envelope returned by the period listing endpoint.

    Example: {"code": "OF-OK", "message": null, "details": [{"periodo": 202602, "emitidos": 68}]}
    """
    code: Optional[str] = None
    message: Optional[str] = None
    details: List[PeriodEntry] = Field(default_factory=list)

    def available_periods(self, doc_type: DocumentType) -> List[str]:
        """Periods with a positive document count, sorted ascending."""
        return sorted(
            str(entry.periodo)
            for entry in self.details
            if getattr(entry, doc_type.count_field) > 0
        )
