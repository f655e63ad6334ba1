"""
Receipt analysis with a vision model.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path

from .gemini import AIModel, InlineImage, parse_json_response
from .models import ReceiptAnalysis, ReceiptFailure, receipt_analysis_from_dict

logger = logging.getLogger(__name__)

RECEIPT_PROMPT = """You are a receipt parser. Analyze this receipt image and extract the following information:
- Each item's name
- Each item's price
- Each item's quantity (default to 1 if not specified)
- The total price

Return ONLY a valid JSON object in this exact format (no markdown, no explanation):
{
  "items": [
    {
      "name": "Item Name",
      "quantity": 1,
      "price": 10.99
    }
  ],
  "total": 10.99
}

Make sure all prices are numbers (not strings). If you cannot read the receipt, return {"error": "Could not parse receipt"}."""


class ReceiptAnalyzer:
    """
    Turns a receipt photo into line items and a total.

    Every failure (model, network, bad JSON, unreadable file) is returned as
    a ``ReceiptFailure``; nothing is raised to the caller.
    """

    def __init__(self, model: AIModel, prompt: str = RECEIPT_PROMPT):
        self.model = model
        self.prompt = prompt

    async def analyze(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ReceiptAnalysis:
        """Analyze receipt image bytes."""
        try:
            text = await self.model.generate(self.prompt, InlineImage(image_bytes, mime_type))
            data = parse_json_response(text)
        except Exception as e:
            logger.exception("Error analyzing receipt")
            return ReceiptFailure(f"Failed to analyze receipt: {e}")

        return receipt_analysis_from_dict(data)

    async def analyze_file(self, path: Path, mime_type: str | None = None) -> ReceiptAnalysis:
        """Read an image from disk and analyze it."""
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"

        try:
            image_bytes = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.exception(f"Could not read receipt image {path}")
            return ReceiptFailure(f"Failed to analyze receipt: {e}")

        return await self.analyze(image_bytes, mime_type)
