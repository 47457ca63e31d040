"""
extraction.py
-------------
Turn a bank-statement PDF into a list of transactions.

The PDF itself is never parsed here: it is handed to Gemini together with
an extraction prompt and a response schema, and the JSON the model returns
is cleaned up and given stable ids.  Without an API key the service falls
back to randomly generated demo data so the rest of the flow stays usable.
"""

from __future__ import annotations

import json
import logging
import os
import random
import re
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import date, timedelta
from typing import List, Optional

from dotenv import load_dotenv
from google import genai
from google.genai import types

load_dotenv()

logger = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "90"))

DEFAULT_CURRENCY = "AED"

EXTRACTION_PROMPT = """
Analyze this bank statement PDF. Extract all transactions.

CRITICAL ACCURACY INSTRUCTIONS:
1. YEAR: Look at the top of the document (Statement Period/Date Range/Generation Date) to identify the CORRECT YEAR (e.g., 2024, 2025).
2. TRANSACTION DATES: Return as YYYY-MM-DD. Use the year identified in step 1.
3. DESCRIPTION: Use the EXACT ORIGINAL TEXT found in the description column of the statement. DO NOT summarize, DO NOT rename vendors, and DO NOT truncate the text yourself. Keep every detail from the row (e.g., "PURCHASE-FUEL ADNOC 123456").
4. AMOUNT: Positive for credits/income, negative for debits/expenses.
5. CURRENCY: Always set to 'AED' (UAE Dirhams), regardless of the symbol in the document.
6. CATEGORY: Classify precisely based on the description.

Return ONLY a JSON array. No markdown tags.
"""

RESPONSE_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "date": types.Schema(type=types.Type.STRING),
            "description": types.Schema(type=types.Type.STRING),
            "amount": types.Schema(type=types.Type.NUMBER),
            "currency": types.Schema(type=types.Type.STRING),
            "category": types.Schema(type=types.Type.STRING),
        },
        required=["date", "description", "amount", "category"],
    ),
)

DEMO_CATEGORIES = ["Dining Out", "Supermarket", "Housing", "Fuel", "Subscriptions", "Entertainment", "Income"]
DEMO_DESCRIPTIONS = {
    "Dining Out": ["Restaurant Payment", "Coffee Shop", "Fast Food", "Local Cafe"],
    "Supermarket": ["Grocery Store", "Hypermarket", "Convenience Store"],
    "Housing": ["Rent Payment", "Utility Bill", "Maintenance Fee", "Furniture Store"],
    "Fuel": ["Petrol Station", "Service Station", "Gas Station"],
    "Subscriptions": ["Streaming Service", "Music Subscription", "App Store", "Cloud Storage"],
    "Entertainment": ["Cinema", "Video Games", "Bowling", "Concert Ticket"],
    "Income": ["Salary Transfer", "Freelance Payment", "Deposit"],
}


class ExtractionError(Exception):
    """The AI service failed or returned something that is not a transaction list."""


class ExtractionTimeout(ExtractionError):
    pass


def new_transaction_id() -> str:
    return uuid.uuid4().hex


def is_pdf(content_type: Optional[str], data: bytes) -> bool:
    return content_type == "application/pdf" or data[:4] == b"%PDF"


def clean_json(text: str) -> str:
    """Strip markdown code fences the model sometimes wraps around JSON."""
    cleaned = text.replace("```json", "").replace("```", "")
    return cleaned.strip()


def generate_demo_transactions(error_message: Optional[str] = None, rng: Optional[random.Random] = None,
                               today: Optional[date] = None) -> List[dict]:
    """Twenty plausible transactions from the last month, flagged as demo data."""
    rng = rng or random.Random()
    today = today or date.today()

    data = []
    for i in range(20):
        cat = rng.choice(DEMO_CATEGORIES)
        desc = rng.choice(DEMO_DESCRIPTIONS[cat])
        is_income = cat == "Income"
        amount = (rng.random() * 5000 + 2000) if is_income else -(rng.random() * 300 + 20)
        txn_date = today - timedelta(days=rng.randrange(30))

        data.append({
            "id": uuid.uuid4().hex[:7],
            "date": txn_date.isoformat(),
            "description": f"DEMO MODE: {error_message or 'Unknown Cause'}" if i == 0 else desc,
            "amount": round(amount, 2),
            "currency": DEFAULT_CURRENCY,
            "category": cat,
            "isDemo": True,
            "debugError": error_message,
        })
    return data


def normalize_transactions(raw) -> List[dict]:
    if not isinstance(raw, list):
        raise ExtractionError("Expected a JSON array of transactions")

    rows = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        row = dict(item)
        row["id"] = row.get("id") or new_transaction_id()
        try:
            row["amount"] = float(row.get("amount") or 0)
        except (TypeError, ValueError) as exc:
            raise ExtractionError(f"Unreadable amount {row.get('amount')!r}") from exc
        row["currency"] = row.get("currency") or DEFAULT_CURRENCY
        row["category"] = row.get("category") or "Other"
        row["description"] = str(row.get("description") or "")
        rows.append(row)
    return rows


def _generate(client: genai.Client, pdf_bytes: bytes) -> str:
    response = client.models.generate_content(
        model=GEMINI_MODEL,
        contents=[
            types.Part.from_bytes(data=pdf_bytes, mime_type="application/pdf"),
            EXTRACTION_PROMPT,
        ],
        config=types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
        ),
    )
    return response.text or "[]"


def parse_bank_statement(pdf_bytes: bytes, client: Optional[genai.Client] = None) -> List[dict]:
    """Extract transactions from a statement PDF, or demo data without an API key."""
    if client is None:
        if not GEMINI_API_KEY:
            logger.warning("[Gemini] No API Key found in GEMINI_API_KEY. Falling back to Demo Data.")
            return generate_demo_transactions("Missing API Key in GEMINI_API_KEY")
        client = genai.Client(api_key=GEMINI_API_KEY)

    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_generate, client, pdf_bytes)
    try:
        text = future.result(timeout=EXTRACTION_TIMEOUT_SECONDS)
    except FuturesTimeout:
        logger.error("[Gemini] Analysis timed out after %.0fs", EXTRACTION_TIMEOUT_SECONDS)
        raise ExtractionTimeout("Analysis timed out")
    except Exception as exc:
        logger.error("[Gemini] API Error: %s", exc)
        raise ExtractionError(str(exc)) from exc
    finally:
        executor.shutdown(wait=False)

    try:
        raw = json.loads(clean_json(text))
    except json.JSONDecodeError as exc:
        logger.error("[Gemini] Response was not valid JSON: %s", re.sub(r"\s+", " ", text)[:200])
        raise ExtractionError("Response was not valid JSON") from exc

    return normalize_transactions(raw)
