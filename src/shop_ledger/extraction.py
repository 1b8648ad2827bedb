"""Bill image extraction backed by Google Gemini.

The extractor turns a photographed invoice into a :class:`PartialBill`. Its
output is a best-effort guess: any field may be missing or wrong, so callers
must run the result through the master validator before offering it for
save.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence, Tuple

from . import log
from .constants import DEFAULT_EXTRACTION_MODEL
from .data_manager import ConfigSettings, quantize_money


_PROMPT = """\
Analyze this bill image. Extract the shop name, invoice number, date and every
product line.

SHOP NAME: the bill belongs to one of these known shops: [{shop_names}].
Match the text on the bill to one of these exact names. If nothing matches
exactly, return the closest match or the raw text.

PRODUCTS: the business only sells these products: [{product_names}].
Map every line on the bill to one of these exact names. If a line cannot be
mapped, return the raw text found on the bill so it can be corrected.

For each line extract the product name, retail price (rate), quantity and
line total.

Reply with JSON only, in this shape:
{{
  "shopName": "...",
  "invoiceNumber": "...",
  "date": "YYYY-MM-DD",
  "items": [
    {{"productName": "...", "retailPrice": 0, "quantity": 0, "total": 0}}
  ],
  "totalAmount": 0
}}
Numeric values must be JSON numbers.
"""


class ExtractionError(Exception):
    """Raised when the model reply cannot be interpreted as a bill."""


@dataclass(frozen=True)
class PartialBillItem:
    """A line item as read from an image; every field may be absent."""

    product_name: Optional[str] = None
    retail_price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    total: Optional[Decimal] = None


@dataclass(frozen=True)
class PartialBill:
    """A bill as read from an image; every field may be absent."""

    shop_name: Optional[str] = None
    invoice_number: Optional[str] = None
    bill_date: Optional[str] = None
    items: Tuple[PartialBillItem, ...] = ()
    total_amount: Optional[Decimal] = None


class BillExtractor(ABC):
    """Abstract base for turning invoice images into partial bills."""

    @abstractmethod
    def extract(
        self,
        image_bytes: bytes,
        known_shop_names: Sequence[str],
        known_product_names: Sequence[str],
        *,
        mime_type: str = "image/jpeg",
    ) -> PartialBill:
        """Read one invoice image.

        The known names are hints for mapping printed text onto master
        records; the extractor is free to return names outside them.
        """
        ...


class GeminiBillExtractor(BillExtractor):
    """Extract bills using Google Gemini's vision capability."""

    def __init__(self, api_key: str = "", model: str = DEFAULT_EXTRACTION_MODEL) -> None:
        self._api_key = api_key
        self._model = model

    def extract(
        self,
        image_bytes: bytes,
        known_shop_names: Sequence[str],
        known_product_names: Sequence[str],
        *,
        mime_type: str = "image/jpeg",
    ) -> PartialBill:
        if not self._api_key:
            raise ValueError(
                "Gemini API key is not configured. "
                "Set Extraction.ApiKey in config.ini or the GEMINI_API_KEY environment variable."
            )

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "google-generativeai SDK is required: pip install google-generativeai"
            ) from None

        genai.configure(api_key=self._api_key)
        model = genai.GenerativeModel(self._model)

        prompt = build_prompt(known_shop_names, known_product_names)
        parts: list = [{"mime_type": mime_type, "data": image_bytes}, prompt]
        log.info("Requesting bill extraction from model '%s' (%d bytes)", self._model, len(image_bytes))
        response = model.generate_content(
            parts,
            generation_config={"response_mime_type": "application/json"},
        )
        text = response.text
        if not text:
            raise ExtractionError("No data returned from the extraction model")
        return parse_extraction_response(text)


def build_prompt(known_shop_names: Sequence[str], known_product_names: Sequence[str]) -> str:
    """Fill the extraction prompt with the current master names."""

    return _PROMPT.format(
        shop_names=", ".join(known_shop_names),
        product_names=", ".join(known_product_names),
    )


def parse_extraction_response(text: str) -> PartialBill:
    """Parse the JSON object returned by the model into a :class:`PartialBill`.

    Markdown code fences around the JSON are tolerated. A missing retail price
    is derived from ``total / quantity`` when both are present and the
    quantity is non-zero, rounded to the currency unit.

    Raises:
        ExtractionError: If the reply is not a JSON object.
    """

    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Extraction reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionError("Extraction reply must be a JSON object")

    items = []
    for raw_item in data.get("items") or []:
        if not isinstance(raw_item, dict):
            continue
        quantity = _optional_decimal(raw_item.get("quantity"))
        total = _optional_decimal(raw_item.get("total"))
        retail_price = _optional_decimal(raw_item.get("retailPrice"))
        if not retail_price and total is not None and quantity:
            retail_price = quantize_money(total / quantity)
        items.append(
            PartialBillItem(
                product_name=_optional_text(raw_item.get("productName")),
                retail_price=retail_price,
                quantity=quantity,
                total=total,
            )
        )

    return PartialBill(
        shop_name=_optional_text(data.get("shopName")),
        invoice_number=_optional_text(data.get("invoiceNumber")),
        bill_date=_optional_text(data.get("date")),
        items=tuple(items),
        total_amount=_optional_decimal(data.get("totalAmount")),
    )


def create_extractor(settings: ConfigSettings) -> BillExtractor:
    """Create the configured extractor."""

    return GeminiBillExtractor(api_key=settings.extraction_api_key, model=settings.extraction_model)


def _optional_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _optional_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        log.warning("Ignoring non-numeric extracted value %r", raw)
        return None
    return value if value.is_finite() else None
