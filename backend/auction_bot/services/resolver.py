"""Selector fallback resolution across a page and its subframes.

The auction site has no stable markup, so every logical field is described by
an ordered list of candidate locators (see site_selectors). The resolver polls
until one of them matches. Candidates are tried in order and, for each
candidate, the main frame is searched before subframes in attachment order.
The first hit wins; hits from different candidates are never combined.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Type

from playwright.async_api import Error as PlaywrightError

from auction_bot.core.errors import AutomationError
from auction_bot.core.logger import logger, log_action

@dataclass
class Resolved:
    field: str
    element: Any
    selector: str
    frame_url: str

    def __bool__(self) -> bool:
        return True

@dataclass
class NotFound:
    field: str
    tried: List[str] = field(default_factory=list)
    frames: List[str] = field(default_factory=list)
    elapsed_ms: int = 0

    def __bool__(self) -> bool:
        return False

    def describe(self) -> dict:
        return {
            "field": self.field,
            "tried": self.tried,
            "frames": self.frames,
            "elapsed_ms": self.elapsed_ms,
        }

def frames_in_scope(scope: Any) -> List[Any]:
    """Main frame first, then attached subframes in the order the page lists them.

    Anything that is not a Page (a Frame, an ElementHandle) is its own scope.
    """
    main_frame = getattr(scope, "main_frame", None)
    if main_frame is None:
        return [scope]

    frames = [main_frame]
    for frame in getattr(scope, "frames", []):
        if frame is main_frame:
            continue
        if frame.is_detached():
            continue
        frames.append(frame)
    return frames

def _frame_url(frame: Any) -> str:
    return getattr(frame, "url", "") or ""

async def _query(frame: Any, selector: str, visible: bool) -> Optional[Any]:
    try:
        element = await frame.query_selector(selector)
        if element is None:
            return None
        if visible and not await element.is_visible():
            return None
        return element
    except PlaywrightError as e:
        # Invalid selector syntax, or the frame navigated away mid-query
        logger.debug(f"Selector query failed for {selector!r}: {e}", extra={'selector': selector})
        return None

async def query_first(root: Any, candidates: Sequence[str], visible: bool = False) -> Optional[Resolved]:
    """Single pass over candidates, no waiting. Used for lookups inside a result row."""
    for selector in candidates:
        for frame in frames_in_scope(root):
            element = await _query(frame, selector, visible)
            if element is not None:
                return Resolved(field="", element=element, selector=selector, frame_url=_frame_url(frame))
    return None

async def resolve(
    field_label: str,
    candidates: Sequence[str],
    scope: Any,
    timeout_ms: int = 8000,
    poll_interval_ms: int = 250,
    visible: bool = False,
):
    """
    Locate the element for a logical field.

    Args:
        field_label: Logical field name, used for logs and diagnostics
        candidates: Ordered locators, most specific first
        scope: Playwright Page (main frame + subframes), Frame, or ElementHandle
        timeout_ms: Total time to keep polling
        poll_interval_ms: Delay between scans
        visible: Require the matched element to be visible

    Returns:
        Resolved on success, otherwise a falsy NotFound with the candidates
        tried and the frame URLs seen.
    """
    start = time.monotonic()
    deadline = start + timeout_ms / 1000
    seen_frames: List[str] = []

    while True:
        frames = frames_in_scope(scope)
        for frame in frames:
            url = _frame_url(frame)
            if url not in seen_frames:
                seen_frames.append(url)

        for selector in candidates:
            for frame in frames:
                element = await _query(frame, selector, visible)
                if element is not None:
                    duration_ms = int((time.monotonic() - start) * 1000)
                    log_action(
                        "resolve",
                        field=field_label,
                        selector=selector,
                        frame=_frame_url(frame),
                        duration_ms=duration_ms,
                        status="found",
                    )
                    return Resolved(
                        field=field_label,
                        element=element,
                        selector=selector,
                        frame_url=_frame_url(frame),
                    )

        if time.monotonic() >= deadline:
            break
        await asyncio.sleep(poll_interval_ms / 1000)

    not_found = NotFound(
        field=field_label,
        tried=list(candidates),
        frames=seen_frames,
        elapsed_ms=int((time.monotonic() - start) * 1000),
    )
    logger.warning(
        f"No candidate matched for {field_label}",
        extra={'field': field_label, 'tried': not_found.tried, 'frames': not_found.frames,
               'duration_ms': not_found.elapsed_ms, 'status': 'not_found'}
    )
    return not_found

async def require(
    field_label: str,
    candidates: Sequence[str],
    scope: Any,
    error: Type[AutomationError],
    **kwargs,
) -> Resolved:
    """resolve() that raises `error` carrying the NotFound diagnostic."""
    result = await resolve(field_label, candidates, scope, **kwargs)
    if not result:
        raise error(f"Could not locate {field_label}", diagnostic=result.describe())
    return result

async def page_contains_text(page: Any, markers: Sequence[str]) -> Optional[str]:
    """Return the first marker found in the body text of any frame."""
    for frame in frames_in_scope(page):
        try:
            text = await frame.inner_text("body", timeout=2000)
        except PlaywrightError:
            continue
        for marker in markers:
            if marker in text:
                return marker
    return None
