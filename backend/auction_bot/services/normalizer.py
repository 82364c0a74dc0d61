"""Convert free-text budget and mileage expressions into integer units.

Users (and the auction site's own dropdowns) write amounts such as
"100万", "１００万円", "1,200,000円", "5万km" or "5千km". Everything is
reduced to plain yen / kilometres so the driver never sees localized text.
"""

import re
import unicodedata
from typing import Dict, Optional, Union

from auction_bot.services.models import PRICE_SENTINEL, SearchCriteria

MAN = 10_000
SEN = 1_000

_NUMBER = r'(\d+(?:\.\d+)?)'
_MAN_PATTERN = re.compile(_NUMBER + r'\s*万')
_SEN_PATTERN = re.compile(_NUMBER + r'\s*千')
_DIGITS = re.compile(r'\d+')

def _prepare(text: str) -> str:
    # NFKC folds full-width digits and commas to ASCII
    text = unicodedata.normalize("NFKC", str(text)).strip()
    return text.replace(",", "")

def _scaled(match: re.Match, unit: int) -> Optional[int]:
    try:
        return int(round(float(match.group(1)) * unit))
    except OverflowError:
        return None

def _first_int(text: str) -> Optional[int]:
    digits = _DIGITS.search(text)
    if not digits:
        return None
    try:
        return int(digits.group(0))
    except ValueError:
        # Past the interpreter's int-from-string digit limit
        return None

def normalize_yen(text: Union[str, int, None]) -> Optional[int]:
    """Currency text to integer yen; None when no digits are present or the number cannot be parsed."""
    if text is None:
        return None
    if isinstance(text, int):
        return text

    cleaned = _prepare(text)
    match = _MAN_PATTERN.search(cleaned)
    if match:
        return _scaled(match, MAN)

    return _first_int(cleaned)

def normalize_km(text: Union[str, int, None]) -> Optional[int]:
    """Distance text to integer kilometres; None when no digits are present or the number cannot be parsed."""
    if text is None:
        return None
    if isinstance(text, int):
        return text

    cleaned = _prepare(text)
    match = _MAN_PATTERN.search(cleaned)
    if match:
        return _scaled(match, MAN)

    match = _SEN_PATTERN.search(cleaned)
    if match:
        return _scaled(match, SEN)

    return _first_int(cleaned)

def price_sort_key(price_text: Optional[str]) -> int:
    value = normalize_yen(price_text) if price_text else None
    return PRICE_SENTINEL if value is None else value

def _text_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None

def criteria_from_slots(collected: Dict[str, str]) -> SearchCriteria:
    """Build SearchCriteria from raw slot answers ("" means skipped)."""
    return SearchCriteria(
        maker=_text_or_none(collected.get("maker")),
        model=_text_or_none(collected.get("model")),
        grade=_text_or_none(collected.get("grade")),
        type=_text_or_none(collected.get("type")),
        budget_yen=normalize_yen(collected.get("budget") or None),
        mileage_km=normalize_km(collected.get("mileage") or None),
        keyword=_text_or_none(collected.get("keyword")),
    )
