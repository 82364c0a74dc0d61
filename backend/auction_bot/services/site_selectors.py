"""Selector candidate sets for the auction site.

Each logical field maps to an ordered list of locators, most specific first.
The resolver takes the first locator that matches anything, so put stable
ids/names ahead of text- or class-based guesses. Entries containing
`{label}` are templates filled per venue category or status filter.
"""

from typing import Dict, List

AUCTION_SELECTORS: Dict[str, List[str]] = {
    # --- authentication ---
    "logged_in_marker": [
        "a[href*='logout']",
        "a[href*='Logout']",
        "#logout",
        "text=ログアウト",
        "[class*='member-name']",
        "[class*='user-name']",
    ],
    "login_username": [
        "input[name='loginId']",
        "input[name='login_id']",
        "input[name='userId']",
        "input[name='username']",
        "input#loginId",
        "input[type='text'][name*='id' i]",
        "input[type='email']",
        "form input[type='text']",
    ],
    "login_password": [
        "input[name='password']",
        "input[name='passwd']",
        "input#password",
        "input[type='password']",
    ],
    "login_submit": [
        "button[type='submit']:has-text('ログイン')",
        "input[type='submit'][value*='ログイン']",
        "input[type='image'][alt*='ログイン']",
        "button:has-text('ログイン')",
        "a:has-text('ログイン')",
        "button[type='submit']",
        "input[type='submit']",
    ],
    # --- venue / category selection ---
    "venue_select_all": [
        "tr:has-text('{label}') input[type='checkbox'][name*='all' i]",
        "tr:has-text('{label}') a:has-text('全選択')",
        "tr:has-text('{label}') button:has-text('全選択')",
        "div:has-text('{label}') >> a:has-text('全て選択')",
        "label:has-text('{label}') input[type='checkbox']",
        "a:has-text('{label}全選択')",
    ],
    "to_search": [
        "a:has-text('検索画面へ')",
        "button:has-text('検索画面へ')",
        "input[type='submit'][value*='検索画面']",
        "a[href*='search']:has-text('検索')",
        "input[type='button'][value*='次へ']",
        "button:has-text('次へ')",
    ],
    # --- keyword / filters ---
    "keyword_input": [
        "input[name='freeword']",
        "input[name='freeWord']",
        "input[name='keyword']",
        "input#freeword",
        "input[placeholder*='フリーワード']",
        "input[placeholder*='キーワード']",
        "input[type='search']",
    ],
    "price_max": [
        "select[name='priceTo']",
        "select[name='price_to']",
        "select[name*='price' i][name*='to' i]",
        "input[name='priceTo']",
        "input[name*='price' i][name*='max' i]",
    ],
    "mileage_max": [
        "select[name='mileageTo']",
        "select[name='mileage_to']",
        "select[name*='mileage' i][name*='to' i]",
        "select[name*='soukou' i]",
        "input[name='mileageTo']",
    ],
    "search_submit": [
        "button[type='submit']:has-text('検索')",
        "input[type='submit'][value*='検索']",
        "input[type='image'][alt*='検索']",
        "button:has-text('検索する')",
        "a:has-text('検索する')",
        "button#search",
    ],
    "status_checkbox": [
        "label:has-text('{label}') input[type='checkbox']",
        "input[type='checkbox'][value='{label}']",
        "input[type='checkbox'][title='{label}']",
        "td:has-text('{label}') input[type='checkbox']",
    ],
    "status_apply": [
        "button:has-text('絞り込み')",
        "input[type='submit'][value*='絞り込']",
        "a:has-text('絞り込み')",
        "button:has-text('再表示')",
        "input[type='button'][value*='再表示']",
    ],
    # --- results ---
    "results_container": [
        "table#resultList",
        "table.result-list",
        "table[class*='result']",
        "div#resultList",
        "div[class*='result-list']",
        "ul[class*='result']",
    ],
    "result_row": [
        "tbody tr[class*='item']",
        "tr[data-id]",
        "li[class*='item']",
        "div[class*='item-row']",
        "tbody tr:has(td)",
    ],
    "no_results_marker": [
        "text=該当する車両がありません",
        "text=該当データがありません",
        "text=検索結果は0件",
        "[class*='no-result']",
    ],
    # --- per-row fields (queried inside one result row) ---
    "row_title": [
        "[class*='car-name']",
        "[class*='carName']",
        "td.name a",
        "td.name",
        "a[href*='detail']",
    ],
    "row_grade": [
        "[class*='grade']",
        "td.grade",
    ],
    "row_district": [
        "[class*='area']",
        "[class*='kaijo']",
        "td.place",
    ],
    "row_year": [
        "[class*='year']",
        "[class*='nenshiki']",
        "td.year",
    ],
    "row_mileage": [
        "[class*='mileage']",
        "[class*='soukou']",
        "td.distance",
    ],
    "row_price": [
        "[class*='price']",
        "[class*='kakaku']",
        "td.price",
    ],
    "row_image": [
        "img[src*='car']",
        "img[class*='thumb']",
        "img",
    ],
    "row_detail_link": [
        "a[href*='detail']",
        "a[href*='Detail']",
        "a[href]",
    ],
}

# Page text announcing that the account was logged in elsewhere.
COLLISION_MARKERS: List[str] = [
    "他の端末でログイン",
    "別の端末からログイン",
    "二重ログイン",
    "既にログインしています",
    "同一IDでログイン",
    "logged in from another",
]

def get_candidates(field: str, **params: str) -> List[str]:
    """Ordered locators for a logical field, with `{label}` style templates filled."""
    if field not in AUCTION_SELECTORS:
        raise KeyError(f"Unknown selector field: {field}")
    candidates = AUCTION_SELECTORS[field]
    if not params:
        return list(candidates)
    return [candidate.format(**params) for candidate in candidates]
