"""
OCR Payment Verification - extracts Transaction ID & Amount from Kpay/Wave screenshots.

Supports: Kpay, WaveMoney, UAB Pay, AYA Pay, CB Pay receipts.
Tesseract runs in a worker thread; callers bound it with a timeout.
"""

import asyncio
import os
import re
from typing import Protocol

from pydantic import BaseModel

from storefront.logging import get_logger

logger = get_logger(__name__)

# OCR language(s), e.g. "eng" or "eng+mya"
OCR_LANGUAGE = os.environ.get("OCR_LANGUAGE", "eng")

TRANSACTION_ID_PATTERNS = [
    # Kpay: Transaction ID formats
    re.compile(r"(?:transaction\s*(?:id|no|number)?|trans(?:action)?\s*#?|ငွေလွှဲ\s*နံပါတ်)\s*[:\-]?\s*([A-Z0-9]{6,20})", re.I),
    # WaveMoney: Reference number
    re.compile(r"(?:reference\s*(?:no|number|id)?|ref\s*#?)\s*[:\-]?\s*([A-Z0-9]{6,20})", re.I),
    # Generic alphanumeric ids
    re.compile(r"\b([A-Z]{2,4}\d{8,16})\b", re.I),
    # Pure numeric ids
    re.compile(r"(?:transaction|trans|ref|txn)\s*[:\-]?\s*(\d{8,20})", re.I),
    re.compile(r"\b(KP\d{10,})\b", re.I),
    re.compile(r"\b(WM\d{10,})\b", re.I),
]

AMOUNT_PATTERNS = [
    # 5,000 Ks / 5000 MMK
    re.compile(r"(?:amount|ပမာဏ|total|ငွေပမာဏ)\s*[:\-]?\s*([0-9,]+(?:\.\d{1,2})?)\s*(?:ks|kyat|mmk|ကျပ)", re.I),
    # Currency before amount
    re.compile(r"(?:ks|mmk|ကျပ)\s*[:\-]?\s*([0-9,]+(?:\.\d{1,2})?)", re.I),
    re.compile(r"(?:amount|ပမာဏ|total)\s*[:\-]?\s*([0-9,]+(?:\.\d{1,2})?)", re.I),
    # Standalone grouped number
    re.compile(r"\b(\d{1,3}(?:,\d{3})+(?:\.\d{2})?)\b"),
]


class OcrResult(BaseModel):
    """What the adapter could read off a receipt; every field may be missing."""

    amount: str | None = None
    transaction_id: str | None = None
    confidence: float = 0
    raw_text: str = ""


class OcrAdapter(Protocol):
    async def extract(self, image_path: str) -> OcrResult: ...


def extract_transaction_id(text: str) -> str | None:
    for pattern in TRANSACTION_ID_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return None


def extract_amount(text: str) -> str | None:
    """Amount as digits (thousands separators removed)."""
    for pattern in AMOUNT_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).replace(",", "").strip()
    return None


def parse_receipt_text(text: str, confidence: float) -> OcrResult:
    return OcrResult(
        amount=extract_amount(text),
        transaction_id=extract_transaction_id(text),
        confidence=confidence,
        raw_text=text,
    )


class TesseractOcrAdapter:
    """pytesseract-backed adapter. Raises on unreadable images or a missing binary."""

    def __init__(self, language: str = OCR_LANGUAGE):
        self.language = language

    def _recognize(self, image_path: str) -> OcrResult:
        import pytesseract
        from PIL import Image

        with Image.open(image_path) as image:
            data = pytesseract.image_to_data(
                image, lang=self.language, output_type=pytesseract.Output.DICT
            )

        words = []
        confidences = []
        for word, conf in zip(data.get("text", []), data.get("conf", [])):
            try:
                conf_value = float(conf)
            except (TypeError, ValueError):
                continue
            if conf_value < 0:
                continue
            confidences.append(conf_value)
            if word and word.strip():
                words.append(word.strip())

        text = " ".join(words)
        confidence = sum(confidences) / len(confidences) if confidences else 0
        return parse_receipt_text(text, round(confidence, 2))

    async def extract(self, image_path: str) -> OcrResult:
        result = await asyncio.to_thread(self._recognize, image_path)
        logger.debug(
            f"OCR read {os.path.basename(image_path)}: confidence={result.confidence}, "
            f"txid={'yes' if result.transaction_id else 'no'}, amount={result.amount}"
        )
        return result
