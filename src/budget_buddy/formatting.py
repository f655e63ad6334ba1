"""
Plain-text rendering of search and receipt results for chat replies.
"""

from .models import AlternativesOutcome, ReceiptAnalysis, ReceiptFailure, SearchOutcome

FAILURE_MARK = "❌"


def format_search_response(outcome: SearchOutcome) -> str:
    """Format nearby-place search results."""
    if outcome.error or not outcome.spots:
        return f"{FAILURE_MARK} {outcome.error or 'No places found for your search'}"

    near = f" near {outcome.location}" if outcome.location else ""
    response = f"🔍 Search Results{near}:\n\n"

    if outcome.summary:
        response += f"{outcome.summary}\n\n"

    for spot in outcome.spots:
        response += f"{spot.rank or '•'} {spot.name}\n"
        response += f"   📝 {spot.description}\n"
        if spot.highlights:
            response += f"   ✨ {spot.highlights}\n"
        response += f"   🔗 {spot.url}\n\n"

    return response


def format_alternatives_response(outcome: AlternativesOutcome) -> str:
    """Format cheaper-alternative results."""
    if outcome.error or not outcome.alternatives:
        return f"{FAILURE_MARK} {outcome.error or 'No cheaper alternatives found'}"

    count = len(outcome.alternatives)
    response = (
        f'💰 Found {count} cheaper alternatives for "{outcome.query}" '
        f"near {outcome.location}:\n\n"
    )

    for i, spot in enumerate(outcome.alternatives, start=1):
        response += f"{spot.rank or i}. {spot.name}\n"
        if spot.reason:
            response += f"   📝 {spot.reason}\n"
        else:
            response += f"   📝 {spot.description}\n"
        if spot.estimated_price:
            response += f"   💵 {spot.estimated_price}\n"
        response += f"   🔗 {spot.url}\n\n"

    return response


def format_receipt_response(analysis: ReceiptAnalysis) -> str:
    """Format an itemized receipt, or the failure notice."""
    if isinstance(analysis, ReceiptFailure):
        return f"{FAILURE_MARK} Error: {analysis.error}"

    response = "🧾 Receipt Analysis:\n\n"

    if not analysis.items:
        return response + "No items found in receipt."

    response += "Items:\n"
    for index, item in enumerate(analysis.items, start=1):
        response += f"{index}. {item.name}\n"
        response += f"   Qty: {item.quantity} × ${item.price:.2f}\n"
    response += f"\n💰 Total: ${analysis.total:.2f}"

    return response
