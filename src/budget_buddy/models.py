"""
Data models for budget-buddy.

Search results and ranked spots flow through the search pipeline; messages,
attachments and receipt analyses flow through the messaging pipeline.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class SearchResult:
    """A single web result returned by the search provider."""

    title: str
    url: str
    snippet: str | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        """Create from a provider result record."""
        return cls(
            title=data.get("title") or data.get("name") or "",
            url=data.get("url") or data.get("link") or "",
            snippet=data.get("snippet"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class ScoredResult:
    """A search result paired with its affordability score."""

    result: SearchResult
    affordability_score: int


@dataclass
class RankedSpot:
    """A place recommendation shown to the user."""

    name: str
    description: str
    url: str
    rank: int | None = None
    highlights: str | None = None
    reason: str | None = None  # AI budget analysis
    estimated_price: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "url": self.url,
        }
        if self.rank is not None:
            result["rank"] = self.rank
        if self.highlights:
            result["highlights"] = self.highlights
        if self.reason:
            result["reason"] = self.reason
        if self.estimated_price:
            result["estimatedPrice"] = self.estimated_price
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RankedSpot":
        """Create from a dictionary (model output uses camelCase price)."""
        return cls(
            name=data.get("name", "Unknown"),
            description=data.get("description") or data.get("reason") or "",
            url=data.get("url", ""),
            rank=data.get("rank"),
            highlights=data.get("highlights"),
            reason=data.get("reason"),
            estimated_price=data.get("estimatedPrice") or data.get("estimated_price"),
        )


@dataclass
class SearchOutcome:
    """Result of a nearby-places search."""

    query: str
    location: str | None = None
    spots: list[RankedSpot] = field(default_factory=list)
    summary: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "query": self.query,
            "location": self.location,
            "spots": [s.to_dict() for s in self.spots],
        }
        if self.summary:
            result["summary"] = self.summary
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class AlternativesOutcome:
    """Result of a cheaper-alternatives search."""

    query: str
    location: str
    alternatives: list[RankedSpot] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "query": self.query,
            "location": self.location,
            "alternatives": [s.to_dict() for s in self.alternatives],
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class Attachment:
    """A file attached to a chat message."""

    path: Path
    filename: str
    mime_type: str | None = None

    @property
    def is_image(self) -> bool:
        return bool(self.mime_type) and self.mime_type.startswith("image/")


@dataclass(frozen=True)
class IncomingMessage:
    """A chat message observed by the transport."""

    message_id: int
    sender: str
    text: str | None = None
    attachments: tuple[Attachment, ...] = ()
    is_from_me: bool = False


@dataclass
class UnreadGroup:
    """Unread messages from one sender."""

    sender: str
    messages: list[IncomingMessage] = field(default_factory=list)


@dataclass(frozen=True)
class ReceiptItem:
    """A single line item on a receipt."""

    name: str
    quantity: int
    price: float

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "quantity": self.quantity, "price": self.price}


@dataclass(frozen=True)
class ReceiptSuccess:
    """Receipt read successfully."""

    items: tuple[ReceiptItem, ...]
    total: float

    def to_dict(self) -> dict[str, Any]:
        return {"items": [i.to_dict() for i in self.items], "total": self.total}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class ReceiptFailure:
    """Receipt could not be read."""

    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


ReceiptAnalysis = ReceiptSuccess | ReceiptFailure


def _as_amount(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{what} is not a number: {value!r}")
    amount = float(value)
    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"{what} must be a finite non-negative amount: {value!r}")
    return amount


def receipt_analysis_from_dict(data: Any) -> ReceiptAnalysis:
    """
    Build a receipt analysis from the model's decoded JSON.

    A model-reported ``error`` or any malformed field produces a
    ``ReceiptFailure``; this function does not raise.
    """
    if not isinstance(data, dict):
        return ReceiptFailure("Could not parse receipt: unexpected response shape")

    if data.get("error"):
        return ReceiptFailure(str(data["error"]))

    try:
        items = []
        for raw in data.get("items") or []:
            quantity = raw.get("quantity", 1)
            if quantity is None:
                quantity = 1
            if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
                raise ValueError(f"quantity is not a number: {quantity!r}")
            if quantity < 1 or int(quantity) != quantity:
                raise ValueError(f"quantity must be a whole number >= 1: {quantity!r}")
            items.append(
                ReceiptItem(
                    name=str(raw.get("name") or "Unknown item"),
                    quantity=int(quantity),
                    price=_as_amount(raw.get("price"), "price"),
                )
            )
        # An empty receipt may leave the total out
        total = _as_amount(data.get("total", None if items else 0), "total")
    except (AttributeError, TypeError, ValueError, OverflowError) as e:
        return ReceiptFailure(f"Could not parse receipt: {e}")

    return ReceiptSuccess(items=tuple(items), total=total)
