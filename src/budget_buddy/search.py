"""
Nearby-place search for budget-buddy.

Queries a natural-language web search provider, ranks the results either in
provider order or by affordability, and optionally asks the model to polish
the top picks.
"""

import json
import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

import httpx

from .gemini import AIModel, parse_json_response
from .models import AlternativesOutcome, RankedSpot, SearchOutcome, SearchResult
from .scoring import score_results

logger = logging.getLogger(__name__)

MAX_SPOTS = 3
NO_DESCRIPTION = "No description available"


class RankMode(str, Enum):
    """How search results are ordered before taking the top spots."""

    PLAIN = "plain"
    AFFORDABILITY = "affordability"


class SearchProviderError(Exception):
    """The search provider could not be reached or answered badly."""


class SearchProvider(Protocol):
    """Anything that can run a web search."""

    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]: ...


class WebSearchClient:
    """
    HTTP client for a Dedalus-style web search API.

    Posts ``{"query", "max_results"}`` and accepts results under ``results``,
    ``data`` or as a bare list.
    """

    def __init__(
        self,
        api_key: str | None,
        api_base: str = "https://api.dedaluslabs.ai",
        search_path: str = "/v1/web/search",
        timeout_seconds: float | None = None,
    ):
        self.api_key = api_key
        self.url = f"{api_base.rstrip('/')}/{search_path.lstrip('/')}"
        self.timeout = timeout_seconds

    async def search(self, query: str, max_results: int = 10) -> list[SearchResult]:
        """
        Run a web search.

        Args:
            query: Natural-language query
            max_results: Maximum number of results to request

        Returns:
            Results in provider order (possibly empty)

        Raises:
            SearchProviderError: on HTTP failure
        """
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"query": query, "max_results": max_results}

        logger.debug(f"Web search: {query}")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.warning(f"HTTP error from search provider: {e}")
                raise SearchProviderError(
                    f"search provider returned {e.response.status_code}"
                ) from e

        return self._parse_results(data)[:max_results]

    def _parse_results(self, data: Any) -> list[SearchResult]:
        """Parse results from the API response."""
        if isinstance(data, dict):
            records = data.get("results") or data.get("data") or []
        elif isinstance(data, list):
            records = data
        else:
            records = []

        results = []
        for record in records:
            if not isinstance(record, dict):
                continue
            result = SearchResult.from_dict(record)
            if result.title or result.url:
                results.append(result)
        return results


def _to_spot(result: SearchResult, rank: int) -> RankedSpot:
    return RankedSpot(
        rank=rank,
        name=result.title,
        description=result.snippet or result.description or NO_DESCRIPTION,
        url=result.url,
    )


def rank(
    results: Sequence[SearchResult],
    mode: RankMode = RankMode.PLAIN,
) -> list[RankedSpot]:
    """
    Pick the top spots from a result list.

    Plain mode keeps provider order. Affordability mode sorts by score,
    highest first; ties keep their input order. At most three spots are
    returned, ranked 1..n.
    """
    if mode is RankMode.AFFORDABILITY:
        scored = sorted(score_results(results), key=lambda s: -s.affordability_score)
        ordered = [s.result for s in scored]
    else:
        ordered = list(results)

    return [_to_spot(r, i) for i, r in enumerate(ordered[:MAX_SPOTS], start=1)]


async def search_nearby_places(
    provider: SearchProvider,
    query: str,
    location: str | None = None,
    max_results: int = 10,
) -> SearchOutcome:
    """
    Natural-language search for nearby places.

    Handles queries like "find coffee shops nearby". Provider failures are
    reported in the outcome's ``error`` field.
    """
    logger.info(f"Processing query: {query!r}")

    search_query = f"{query} near {location}" if location else query

    try:
        results = await provider.search(search_query, max_results)
    except Exception as e:
        logger.exception("Error searching nearby places")
        return SearchOutcome(query=query, location=location, error=f"Failed to search: {e}")

    if not results:
        return SearchOutcome(
            query=query,
            location=location,
            error="No results found for your query",
        )

    return SearchOutcome(query=query, location=location, spots=rank(results, RankMode.PLAIN))


def _enhance_prompt(query: str, location: str | None, spots: list[RankedSpot]) -> str:
    near = f" near {location}" if location else ""
    return f"""You are a helpful local guide assistant. A user asked: "{query}"{near}.

Here are the search results:
{json.dumps([s.to_dict() for s in spots], indent=2)}

Analyze these results and provide recommendations. Return a JSON object with enhanced information:
{{
  "summary": "Brief summary of what you found",
  "spots": [
    {{
      "name": "Place Name",
      "description": "Why this place is great",
      "highlights": "Key features or specialties",
      "url": "URL"
    }}
  ]
}}

Make the descriptions engaging and helpful. Focus on what makes each place special."""


async def search_nearby_places_with_ai(
    provider: SearchProvider,
    model: AIModel,
    query: str,
    location: str | None = None,
    max_results: int = 10,
) -> SearchOutcome:
    """
    Search, then let the model summarize and describe the top spots.

    Falls back to the plain search outcome if the model call or its JSON
    fails.
    """
    raw = await search_nearby_places(provider, query, location, max_results)
    if raw.error or not raw.spots:
        return raw

    try:
        text = await model.generate(_enhance_prompt(query, location, raw.spots))
        analysis = parse_json_response(text)
        spots = [RankedSpot.from_dict(s) for s in analysis.get("spots", [])][:MAX_SPOTS]
    except Exception:
        logger.exception("Error in AI-enhanced search, using plain results")
        return raw

    if not spots:
        return raw

    return SearchOutcome(
        query=query,
        location=location,
        spots=spots,
        summary=analysis.get("summary"),
    )


async def find_cheaper_nearby_spots(
    provider: SearchProvider,
    query: str,
    location: str,
    max_results: int = 10,
) -> AlternativesOutcome:
    """
    Find up to three cheaper places of a given kind near a location.

    Args:
        provider: Search provider
        query: Kind of place (e.g. "coffee shop", "grocery store")
        location: Address or area to search near
    """
    logger.info(f"Searching for cheaper {query} near {location}...")

    search_query = f"cheapest budget affordable {query} near {location} with prices"

    try:
        results = await provider.search(search_query, max_results)
    except Exception as e:
        logger.exception("Error searching for cheaper spots")
        return AlternativesOutcome(
            query=query,
            location=location,
            error=f"Failed to search for alternatives: {e}",
        )

    if not results:
        return AlternativesOutcome(query=query, location=location, error="No results found")

    return AlternativesOutcome(
        query=query,
        location=location,
        alternatives=rank(results, RankMode.AFFORDABILITY),
    )


def _budget_prompt(query: str, location: str, spots: list[RankedSpot]) -> str:
    return f"""Based on these search results for cheap {query} near {location}, analyze and rank the top 3 best budget-friendly options:

{json.dumps([s.to_dict() for s in spots], indent=2)}

Return a JSON object with the top 3 spots, including estimated price range and why they're good budget options:
{{
  "spots": [
    {{
      "name": "Spot Name",
      "reason": "Why this is a good budget option",
      "estimatedPrice": "Price range or indication",
      "url": "URL"
    }}
  ]
}}"""


async def find_cheaper_spots_with_ai(
    provider: SearchProvider,
    model: AIModel,
    query: str,
    location: str,
    max_results: int = 10,
) -> AlternativesOutcome:
    """Find cheaper spots and let the model compare their prices."""
    found = await find_cheaper_nearby_spots(provider, query, location, max_results)
    if found.error or not found.alternatives:
        return found

    try:
        text = await model.generate(_budget_prompt(query, location, found.alternatives))
        analysis = parse_json_response(text)
        spots = [RankedSpot.from_dict(s) for s in analysis["spots"]][:MAX_SPOTS]
    except Exception as e:
        logger.exception("Error in AI-powered search")
        return AlternativesOutcome(
            query=query,
            location=location,
            error=f"Failed to analyze alternatives: {e}",
        )

    for i, spot in enumerate(spots, start=1):
        spot.rank = i

    return AlternativesOutcome(query=query, location=location, alternatives=spots)
