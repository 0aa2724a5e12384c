from __future__ import annotations

import json
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel


class AIParseError(ValueError):
    """Raised when the model's answer holds no usable transaction list."""


class ParsedTransaction(BaseModel):
    description: str
    amount: Decimal
    category: str
    category_id: int
    type: str
    confidence: float


class ParseResult(BaseModel):
    valid: list[ParsedTransaction]
    invalid: list[ParsedTransaction]
    message: str | None = None


# Category hints sent to the model. Ids match the seeded system categories.
CATEGORY_HINTS: dict[str, list[tuple[int, str]]] = {
    "expense": [
        (1, "Groceries"),
        (2, "Dining"),
        (3, "Transportation"),
        (4, "Subscription"),
        (5, "Housing"),
        (6, "Entertainment"),
        (7, "Shopping"),
        (8, "Health"),
        (9, "Education"),
        (10, "Travel"),
        (11, "Personal"),
        (12, "Other"),
    ],
    "income": [
        (13, "Salary"),
        (14, "Business"),
        (15, "Investment"),
        (16, "Gift"),
        (17, "Other"),
    ],
}
OTHER_CATEGORY_IDS = {"expense": 12, "income": 17}

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "dining": ["makan", "makanan", "nasi", "padang", "restoran", "cafe", "kopi", "kuliner", "food"],
    "groceries": ["belanja", "supermarket", "minimarket", "sembako", "bahan makanan", "grocery"],
    "transportation": ["transport", "kendaraan", "mobil", "motor", "bensin", "parkir", "tol", "ojek", "grab", "gojek"],
    "subscription": ["langganan", "netflix", "spotify", "youtube", "premium", "berlangganan"],
    "housing": ["rumah", "kost", "kontrakan", "listrik", "air", "internet", "tagihan"],
    "entertainment": ["hiburan", "film", "bioskop", "game", "music", "concert"],
    "shopping": ["belanja", "baju", "celana", "sepatu", "tas", "kemeja", "jaket"],
    "health": ["kesehatan", "dokter", "rumah sakit", "obat", "vitamin"],
    "education": ["pendidikan", "sekolah", "kuliah", "buku", "kursus"],
    "travel": ["travel", "liburan", "hotel", "pesawat", "tiket"],
    "personal": ["personal", "potong rambut", "spa", "salon"],
    "salary": ["gaji", "salary", "pendapatan", "upah"],
    "business": ["bisnis", "usaha", "toko", "jualan"],
    "gift": ["hadiah", "kado", "bonus", "uang"],
}

FENCED_JSON_PATTERNS = (
    re.compile(r"```json\s*([\s\S]*?)\s*```"),
    re.compile(r"```\s*([\[{][\s\S]*[\]}])\s*```"),
)
NUMBER_PATTERN = re.compile(r"\d[\d.]*")
THOUSANDS_PATTERN = re.compile(r"\d{1,3}(?:\.\d{3})+")


def category_keywords(name: str) -> list[str]:
    normalized = name.strip().lower()
    return CATEGORY_KEYWORDS.get(normalized, [normalized])


def available_categories() -> list[dict[str, Any]]:
    return [
        {"name": name, "type": txn_type, "keywords": category_keywords(name)}
        for txn_type, hints in CATEGORY_HINTS.items()
        for _, name in hints
    ]


def build_prompt(user_input: str, language: str) -> str:
    categories = json.dumps(available_categories(), ensure_ascii=False)
    reply_language = "English" if language == "en" else "Indonesian"
    return (
        "You turn short personal-finance notes into transactions.\n"
        "Return JSON only, shaped as "
        '{"transactions": [{"description": str, "amount": number or string, '
        '"category": str, "type": "income" | "expense", "confidence": number}], '
        '"message": str}.\n'
        f"Pick categories from this list: {categories}\n"
        f"Write the message in {reply_language}.\n"
        f"Input: {user_input.strip()}"
    )


def extract_payload(raw: Any) -> tuple[list[dict[str, Any]], str | None]:
    """Pull the transaction list (and optional message) out of a model answer.

    The answer may already be decoded, a JSON string, or JSON wrapped in a
    Markdown code fence.
    """
    data = _decode(raw)
    message = None
    if isinstance(data, dict):
        message = data.get("message")
        transactions = data.get("transactions")
        if isinstance(transactions, str):
            transactions = _decode(transactions)
            if isinstance(transactions, dict):
                transactions = transactions.get("transactions")
    else:
        transactions = data

    if not isinstance(transactions, list):
        raise AIParseError("No transactions found in response.")
    return [item for item in transactions if isinstance(item, dict)], message


def parse_amount(value: Any) -> Decimal:
    """Read amounts like ``25000``, ``"25rb"``, ``"2.5 juta"`` or ``"50k"``."""
    if isinstance(value, bool) or value is None:
        return Decimal("0")
    if isinstance(value, (int, float, Decimal)):
        number = Decimal(str(value))
        # json.loads accepts NaN and Infinity literals.
        return number if number.is_finite() else Decimal("0")
    if not isinstance(value, str):
        return Decimal("0")

    lowered = value.lower()
    multiplier = Decimal("1")
    if "juta" in lowered or "jt" in lowered:
        multiplier = Decimal("1000000")
    elif "ribu" in lowered or "rb" in lowered or "k" in lowered:
        multiplier = Decimal("1000")

    match = NUMBER_PATTERN.search(lowered)
    if not match:
        return Decimal("0")
    digits = match.group(0)
    # "25.000" is Indonesian thousands grouping, not a decimal.
    if multiplier == 1 and THOUSANDS_PATTERN.fullmatch(digits):
        digits = digits.replace(".", "")
    try:
        number = Decimal(digits)
    except InvalidOperation:
        return Decimal("0")
    return (number * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def map_category_id(category_name: str | None, txn_type: str) -> int:
    normalized = (category_name or "").strip().lower()
    hints = CATEGORY_HINTS.get(txn_type, CATEGORY_HINTS["expense"])

    for category_id, name in hints:
        if name.lower() == normalized:
            return category_id

    if normalized:
        for category_id, name in hints:
            if any(keyword in normalized for keyword in category_keywords(name)):
                return category_id

    return OTHER_CATEGORY_IDS.get(txn_type, OTHER_CATEGORY_IDS["expense"])


def normalize_transactions(items: list[dict[str, Any]]) -> list[ParsedTransaction]:
    parsed: list[ParsedTransaction] = []
    for item in items:
        txn_type = str(item.get("type") or "expense").strip().lower()
        if txn_type not in OTHER_CATEGORY_IDS:
            txn_type = "expense"
        category = str(item.get("category") or "")
        confidence = item.get("confidence")
        parsed.append(
            ParsedTransaction(
                description=str(item.get("description") or "").strip(),
                amount=parse_amount(item.get("amount")),
                category=category,
                category_id=map_category_id(category, txn_type),
                type=txn_type,
                confidence=float(confidence) if isinstance(confidence, (int, float)) and confidence else 0.5,
            )
        )
    return parsed


def split_valid(
    transactions: list[ParsedTransaction],
) -> tuple[list[ParsedTransaction], list[ParsedTransaction]]:
    valid: list[ParsedTransaction] = []
    invalid: list[ParsedTransaction] = []
    for txn in transactions:
        if txn.amount > 0 and txn.description.strip():
            valid.append(txn)
        else:
            invalid.append(txn)
    return valid, invalid


def parse_model_answer(raw: Any) -> ParseResult:
    items, message = extract_payload(raw)
    valid, invalid = split_valid(normalize_transactions(items))
    return ParseResult(valid=valid, invalid=invalid, message=message)


def _decode(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    text = raw.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for pattern in FENCED_JSON_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as exc:
            raise AIParseError("Invalid JSON format in response.") from exc
    raise AIParseError("No valid JSON found in response.")
