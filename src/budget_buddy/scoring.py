"""
Affordability scoring for search results.

A result earns points for each budget-friendly keyword it mentions and loses
points for each keyword that suggests a pricey place.
"""

from collections.abc import Iterable

from .models import ScoredResult, SearchResult

AFFORDABLE_KEYWORDS = (
    "cheap",
    "budget",
    "affordable",
    "discount",
    "deal",
    "save",
    "inexpensive",
    "low price",
    "bargain",
    "value",
    "economical",
    "free",
    "sale",
    "$",
    "under",
    "less than",
)

EXPENSIVE_KEYWORDS = (
    "luxury",
    "premium",
    "expensive",
    "upscale",
    "high-end",
    "exclusive",
    "gourmet",
    "fine dining",
)

AFFORDABLE_POINTS = 2
EXPENSIVE_PENALTY = 3


def score(result: SearchResult) -> int:
    """
    Score how budget-friendly a result looks. Higher is cheaper.

    Each keyword counts once no matter how often it appears. The score is
    unbounded and can be negative.
    """
    text = f"{result.title} {result.snippet or ''} {result.description or ''}".lower()

    total = 0
    for keyword in AFFORDABLE_KEYWORDS:
        if keyword in text:
            total += AFFORDABLE_POINTS
    for keyword in EXPENSIVE_KEYWORDS:
        if keyword in text:
            total -= EXPENSIVE_PENALTY
    return total


def score_results(results: Iterable[SearchResult]) -> list[ScoredResult]:
    """Pair each result with its score, keeping input order."""
    return [ScoredResult(result=r, affordability_score=score(r)) for r in results]
