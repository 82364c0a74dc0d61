"""Guess which result-row cell holds which field from the shape of its text.

Result rows do not label their cells reliably, so when the per-field
selectors miss, the driver hands the row's cell texts to `classify_cells`.
This is a heuristic and is expected to be wrong sometimes; its output only
fills fields the selectors could not find.
"""

import re
import unicodedata
from typing import Dict, List, Optional

PREFECTURES = (
    "北海道", "青森", "岩手", "宮城", "秋田", "山形", "福島", "茨城", "栃木", "群馬",
    "埼玉", "千葉", "東京", "神奈川", "新潟", "富山", "石川", "福井", "山梨", "長野",
    "岐阜", "静岡", "愛知", "三重", "滋賀", "京都", "大阪", "兵庫", "奈良", "和歌山",
    "鳥取", "島根", "岡山", "広島", "山口", "徳島", "香川", "愛媛", "高知", "福岡",
    "佐賀", "長崎", "熊本", "大分", "宮崎", "鹿児島", "沖縄",
)

_PRICE = re.compile(r'\d[\d,.]*\s*(万円|円|万)|[¥￥]\s*\d')
_MILEAGE = re.compile(r'\d[\d,.]*\s*(万|千)?\s*km', re.IGNORECASE)
_YEAR = re.compile(r'^((19|20)\d{2}\s*年?|(H|R|S|平成|令和|昭和)\s*\d{1,2}\s*年?)(\s*\d{1,2}\s*月)?(式)?$')
_DISTRICT_SUFFIX = re.compile(r'(都|道|府|県|会場|市|区)$')
_ONLY_DIGITS = re.compile(r'^[\d\s,.\-#/]+$')

def _clean(text: Optional[str]) -> str:
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    return re.sub(r'\s+', ' ', text).strip()

def looks_like_price(text: str) -> bool:
    return bool(_PRICE.search(text))

def looks_like_mileage(text: str) -> bool:
    return bool(_MILEAGE.search(text))

def looks_like_year(text: str) -> bool:
    return bool(_YEAR.match(text))

def looks_like_district(text: str) -> bool:
    if len(text) > 12:
        return False
    if any(text.startswith(p) for p in PREFECTURES):
        return True
    return bool(_DISTRICT_SUFFIX.search(text))

def classify_cells(cells: List[str]) -> Dict[str, str]:
    """
    Map raw cell texts of one result row to ListingRecord field names.

    Returns a dict holding any of: title, grade, district, year,
    mileage_text, price_text. Fields with no plausible cell are omitted.
    """
    result: Dict[str, str] = {}
    remaining: List[str] = []

    for raw in cells:
        text = _clean(raw)
        if not text:
            continue
        # Mileage first: "3.2万km" would otherwise pass as a price
        if "mileage_text" not in result and looks_like_mileage(text):
            result["mileage_text"] = text
        elif looks_like_price(text):
            # The last price-shaped cell is usually the current/start price
            result["price_text"] = text
        elif "year" not in result and looks_like_year(text):
            result["year"] = text
        elif "district" not in result and looks_like_district(text):
            result["district"] = text
        elif not _ONLY_DIGITS.match(text):
            remaining.append(text)

    if remaining:
        title_index = max(range(len(remaining)), key=lambda i: len(remaining[i]))
        result["title"] = remaining[title_index]
        for index, text in enumerate(remaining):
            if index != title_index and len(text) <= 30:
                result["grade"] = text
                break

    return result
