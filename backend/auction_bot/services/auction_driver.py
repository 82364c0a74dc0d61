"""Drive the auction site from login to extracted listings.

The run is an ordered list of `Step`s. Each step carries a failure policy:
FATAL steps abort the run, DEGRADE steps log the failure and let the run
continue with less filtering. The browser is acquired once per run and is
released by `async with` on every exit path.
"""

import asyncio
import re
import time
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from auction_bot.core.config import Settings, settings as default_settings
from auction_bot.core.errors import (
    AuthCollision,
    AuthFailure,
    AutomationError,
    ConfigurationError,
    ExtractionUnavailable,
    NavigationTimeout,
)
from auction_bot.core.logger import logger, log_step
from auction_bot.services.browser_agent import BrowserAgent, wait_for_network_idle
from auction_bot.services.models import ListingRecord, SearchCriteria
from auction_bot.services.normalizer import normalize_km, normalize_yen, price_sort_key
from auction_bot.services.resolver import page_contains_text, query_first, require, resolve
from auction_bot.services.row_heuristics import classify_cells
from auction_bot.services.site_selectors import COLLISION_MARKERS, get_candidates

# Short wait used for optional controls and state probes
PROBE_TIMEOUT_MS = 2000

class FailurePolicy(str, Enum):
    FATAL = "fatal"
    DEGRADE = "degrade"

@dataclass
class SearchContext:
    agent: Any
    page: Any
    criteria: SearchCriteria
    settings: Settings
    user_id: Optional[str] = None
    records: List[ListingRecord] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)

    def probe_timeout(self) -> int:
        return min(PROBE_TIMEOUT_MS, self.settings.resolve_timeout_ms)

    async def find(self, field_label: str, candidates: Sequence[str], timeout_ms: int = None, **kwargs):
        return await resolve(
            field_label,
            candidates,
            self.page,
            timeout_ms=self.settings.resolve_timeout_ms if timeout_ms is None else timeout_ms,
            poll_interval_ms=self.settings.resolve_poll_interval_ms,
            **kwargs,
        )

    async def need(self, field_label: str, candidates: Sequence[str], error, timeout_ms: int = None, **kwargs):
        return await require(
            field_label,
            candidates,
            self.page,
            error,
            timeout_ms=self.settings.resolve_timeout_ms if timeout_ms is None else timeout_ms,
            poll_interval_ms=self.settings.resolve_poll_interval_ms,
            **kwargs,
        )

@dataclass
class Step:
    name: str
    policy: FailurePolicy
    handler: Callable[[SearchContext], Awaitable[None]]

async def run_pipeline(steps: Sequence[Step], ctx: SearchContext) -> SearchContext:
    """Run steps in order, applying each step's failure policy."""
    for step in steps:
        start = time.monotonic()
        try:
            await step.handler(ctx)
        except (AutomationError, PlaywrightError) as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            if step.policy is FailurePolicy.DEGRADE:
                ctx.degraded.append(step.name)
                log_step(step.name, step.policy.value, "degraded", duration_ms,
                         user_id=ctx.user_id, kind=type(e).__name__)
                logger.warning(f"Continuing without {step.name}: {e}")
                continue

            log_step(step.name, step.policy.value, "error", duration_ms,
                     user_id=ctx.user_id, kind=type(e).__name__)
            if isinstance(e, PlaywrightTimeout):
                raise NavigationTimeout(
                    f"{step.name} timed out",
                    diagnostic={"step": step.name, "url": ctx.page.url, "error": str(e)},
                ) from e
            raise
        except Exception as e:
            log_step(step.name, step.policy.value, "error",
                     int((time.monotonic() - start) * 1000),
                     user_id=ctx.user_id, kind=type(e).__name__)
            raise

        log_step(step.name, step.policy.value, "success",
                 int((time.monotonic() - start) * 1000), user_id=ctx.user_id)
    return ctx

# --- authentication -------------------------------------------------------

async def _login_confirmed(ctx: SearchContext) -> bool:
    """Race the logged-in marker against the post-login URL."""
    timeout_ms = ctx.settings.login_confirm_timeout_ms

    async def marker_present() -> bool:
        return bool(await ctx.find("logged_in_marker", get_candidates("logged_in_marker"), timeout_ms=timeout_ms))

    async def url_reached() -> bool:
        try:
            await ctx.page.wait_for_url(ctx.settings.auction_post_login_url, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            return False

    pending = {asyncio.ensure_future(marker_present()), asyncio.ensure_future(url_reached())}
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            if any(task.result() for task in done):
                return True
        return False
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

async def authenticate(ctx: SearchContext):
    config = ctx.settings
    if not config.has_auction_credentials:
        raise ConfigurationError("Auction credentials are not configured")

    await ctx.agent.navigate(config.auction_base_url)
    if await ctx.find("logged_in_marker", get_candidates("logged_in_marker"), timeout_ms=ctx.probe_timeout()):
        logger.info("Reusing authenticated session", extra={'user_id': ctx.user_id})
        return

    await ctx.agent.navigate(config.auction_login_url)
    username = await ctx.need("login_username", get_candidates("login_username"), AuthFailure, visible=True)
    password = await ctx.need("login_password", get_candidates("login_password"), AuthFailure, visible=True)
    submit = await ctx.need("login_submit", get_candidates("login_submit"), AuthFailure, visible=True)

    await username.element.fill(config.auction_username)
    await password.element.fill(config.auction_password)
    await submit.element.click()

    if not await _login_confirmed(ctx):
        raise AuthFailure("Login was not confirmed", diagnostic={"url": ctx.page.url})

async def check_session_collision(ctx: SearchContext):
    marker = await page_contains_text(ctx.page, COLLISION_MARKERS)
    if marker:
        raise AuthCollision("Account is logged in elsewhere", diagnostic={"marker": marker, "url": ctx.page.url})

# --- venue selection and search form --------------------------------------

async def _click_or_check(element):
    if await element.get_attribute("type") == "checkbox":
        await element.check()
    else:
        await element.click()

async def select_venues(ctx: SearchContext):
    categories = ctx.settings.venue_categories
    missing = []
    for category in categories:
        found = await ctx.find(
            f"venue_select_all[{category}]",
            get_candidates("venue_select_all", label=category),
            timeout_ms=ctx.probe_timeout(),
        )
        if not found:
            missing.append(category)
            continue
        await _click_or_check(found.element)

    if missing:
        raise NavigationTimeout(f"Venue categories not found: {', '.join(missing)}", diagnostic={"missing": missing})

async def open_search(ctx: SearchContext):
    button = await ctx.find("to_search", get_candidates("to_search"), timeout_ms=ctx.probe_timeout())
    if button:
        await button.element.click()
        await wait_for_network_idle(ctx.page)
    await ctx.need("keyword_input", get_candidates("keyword_input"), NavigationTimeout)

async def enter_keyword(ctx: SearchContext):
    keyword = await ctx.need("keyword_input", get_candidates("keyword_input"), NavigationTimeout)
    await keyword.element.fill(ctx.criteria.freeword())

def choose_option(options: List[Dict[str, str]], limit: int, normalize: Callable) -> Optional[str]:
    """
    Pick the <option> value for an upper-bound filter.

    The largest option whose text normalizes to <= limit wins; when every
    option is above the limit the smallest one is used. Options without a
    number ("指定なし") are ignored.
    """
    parsed = []
    for option in options:
        value = option.get("value")
        if not value:
            continue
        amount = normalize(option.get("text") or "")
        if amount is None:
            amount = normalize(value)
        if amount is None:
            continue
        parsed.append((amount, value))

    if not parsed:
        return None
    within = [p for p in parsed if p[0] <= limit]
    if within:
        return max(within, key=lambda p: p[0])[1]
    return min(parsed, key=lambda p: p[0])[1]

async def _apply_limit(ctx: SearchContext, field_name: str, limit: int, normalize: Callable) -> bool:
    found = await ctx.find(field_name, get_candidates(field_name), timeout_ms=ctx.probe_timeout())
    if not found:
        return False

    element = found.element
    tag = await element.evaluate("el => el.tagName.toLowerCase()")
    if tag == "select":
        options = await element.evaluate(
            "el => Array.from(el.options).map(o => ({value: o.value, text: o.textContent.trim()}))"
        )
        value = choose_option(options, limit, normalize)
        if value is None:
            return False
        await element.select_option(value=value)
    else:
        await element.fill(str(limit))
    return True

async def apply_range_filters(ctx: SearchContext):
    criteria = ctx.criteria
    unavailable = []
    if criteria.budget_yen is not None:
        if not await _apply_limit(ctx, "price_max", criteria.budget_yen, normalize_yen):
            unavailable.append("price_max")
    if criteria.mileage_km is not None:
        if not await _apply_limit(ctx, "mileage_max", criteria.mileage_km, normalize_km):
            unavailable.append("mileage_max")

    if unavailable:
        raise NavigationTimeout(f"Range filters unavailable: {', '.join(unavailable)}", diagnostic={"missing": unavailable})

async def submit_search(ctx: SearchContext):
    button = await ctx.find("search_submit", get_candidates("search_submit"), timeout_ms=ctx.probe_timeout())
    if button:
        await button.element.click()
    else:
        keyword = await ctx.need("keyword_input", get_candidates("keyword_input"), NavigationTimeout)
        await keyword.element.press("Enter")
    await wait_for_network_idle(ctx.page, timeout=10000)

async def filter_status(ctx: SearchContext):
    labels = ctx.settings.status_filters
    if not labels:
        return

    ticked = 0
    missing = []
    for label in labels:
        found = await ctx.find(
            f"status_checkbox[{label}]",
            get_candidates("status_checkbox", label=label),
            timeout_ms=ctx.probe_timeout(),
        )
        if not found:
            missing.append(label)
            continue
        await found.element.check()
        ticked += 1

    if ticked:
        apply_button = await ctx.find("status_apply", get_candidates("status_apply"), timeout_ms=ctx.probe_timeout())
        if apply_button:
            await apply_button.element.click()
            await wait_for_network_idle(ctx.page, timeout=10000)

    if missing:
        raise NavigationTimeout(f"Status filters not found: {', '.join(missing)}", diagnostic={"missing": missing})

# --- extraction -----------------------------------------------------------

ROW_FIELDS = {
    "title": "row_title",
    "grade": "row_grade",
    "district": "row_district",
    "year": "row_year",
    "mileage_text": "row_mileage",
    "price_text": "row_price",
}

def _clean_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r'\s+', ' ', unicodedata.normalize("NFKC", text)).strip()

async def _result_rows(container) -> list:
    for selector in get_candidates("result_row"):
        rows = await container.query_selector_all(selector)
        if rows:
            return rows
    return []

async def _cell_texts(row) -> List[str]:
    cells = await row.query_selector_all("td")
    if not cells:
        cells = await row.query_selector_all(":scope > *")
    return [await cell.inner_text() for cell in cells]

async def _attribute(row, field_name: str, attribute: str, base_url: str) -> Optional[str]:
    hit = await query_first(row, get_candidates(field_name))
    if not hit:
        return None
    value = await hit.element.get_attribute(attribute)
    if not value:
        return None
    return urljoin(base_url, value)

async def extract_row(row, base_url: str = "") -> Optional[ListingRecord]:
    """Map one result row to a ListingRecord; None when no title can be found."""
    fields: Dict[str, str] = {}
    for name, field_name in ROW_FIELDS.items():
        hit = await query_first(row, get_candidates(field_name))
        if hit:
            text = _clean_text(await hit.element.inner_text())
            if text:
                fields[name] = text

    if any(name not in fields for name in ROW_FIELDS):
        guessed = classify_cells(await _cell_texts(row))
        for name, value in guessed.items():
            fields.setdefault(name, value)

    title = fields.get("title")
    if not title:
        return None

    price_text = fields.get("price_text", "")
    return ListingRecord(
        title=title,
        grade=fields.get("grade"),
        district=fields.get("district"),
        year=fields.get("year"),
        mileage_text=fields.get("mileage_text", ""),
        price_text=price_text,
        price_sort_key=price_sort_key(price_text),
        image_url=await _attribute(row, "row_image", "src", base_url),
        detail_url=await _attribute(row, "row_detail_link", "href", base_url),
    )

def rank_listings(records: List[ListingRecord], top_n: int) -> List[ListingRecord]:
    """Cheapest first; records without a price keep their order at the end."""
    return sorted(records, key=lambda r: r.price_sort_key)[:top_n]

async def extract(ctx: SearchContext):
    container = await ctx.find("results_container", get_candidates("results_container"))
    if not container:
        if await query_first(ctx.page, get_candidates("no_results_marker")):
            logger.info("Search returned no results", extra={'user_id': ctx.user_id, 'count': 0})
            ctx.records = []
            return
        raise ExtractionUnavailable("Results container not found", diagnostic=container.describe())

    rows = (await _result_rows(container.element))[:ctx.settings.result_page_size]
    base_url = ctx.page.url
    records = []
    for row in rows:
        record = await extract_row(row, base_url)
        if record is not None:
            records.append(record)

    ctx.records = rank_listings(records, ctx.settings.top_n)
    logger.info(
        f"Extracted {len(records)} listings from {len(rows)} rows",
        extra={'user_id': ctx.user_id, 'count': len(ctx.records)}
    )

DEFAULT_STEPS: List[Step] = [
    Step("authenticate", FailurePolicy.FATAL, authenticate),
    Step("check_session_collision", FailurePolicy.FATAL, check_session_collision),
    Step("select_venues", FailurePolicy.DEGRADE, select_venues),
    Step("open_search", FailurePolicy.FATAL, open_search),
    Step("enter_keyword", FailurePolicy.FATAL, enter_keyword),
    Step("apply_range_filters", FailurePolicy.DEGRADE, apply_range_filters),
    Step("submit_search", FailurePolicy.FATAL, submit_search),
    Step("filter_status", FailurePolicy.DEGRADE, filter_status),
    Step("extract", FailurePolicy.FATAL, extract),
]

class AuctionDriver:
    """Runs one search against the auction site per call to `run`."""

    def __init__(
        self,
        config: Settings = None,
        browser_factory: Callable[[Settings], AsyncContextManager] = BrowserAgent,
        steps: Sequence[Step] = None,
    ):
        self.settings = config or default_settings
        self.browser_factory = browser_factory
        self.steps = list(steps) if steps is not None else list(DEFAULT_STEPS)

    async def run(self, criteria: SearchCriteria, user_id: str = None) -> List[ListingRecord]:
        """
        Search the auction site.

        Returns:
            Listings sorted by price, possibly empty.

        Raises:
            ConfigurationError, AuthFailure, AuthCollision, NavigationTimeout,
            ExtractionUnavailable; anything else is unexpected.
        """
        async with self.browser_factory(self.settings) as agent:
            ctx = SearchContext(
                agent=agent,
                page=agent.page,
                criteria=criteria,
                settings=self.settings,
                user_id=user_id,
            )
            await run_pipeline(self.steps, ctx)
            if ctx.degraded:
                logger.info(f"Search finished with degraded steps: {', '.join(ctx.degraded)}",
                            extra={'user_id': user_id})
            return ctx.records
