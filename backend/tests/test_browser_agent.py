"""
Tests for the browser agent and retry helpers.

The Chromium tests load inline HTML (no network) and are skipped when the
Playwright browser is not installed.
"""

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from auction_bot.core.errors import NavigationTimeout
from auction_bot.core.retry import RetryConfig, is_transient_network_error, retry_async
from auction_bot.services.browser_agent import BrowserAgent
from auction_bot.services.resolver import resolve
from auction_bot.services.site_selectors import get_candidates

LOGIN_PAGE = """
<html><body>
  <h1>会員ログイン</h1>
  <iframe id="login" srcdoc="
    <form>
      <input type='text' name='userId'>
      <input type='password' name='passwd'>
      <input type='submit' value='ログイン'>
    </form>"></iframe>
</body></html>
"""

class ScriptedPage:
    """Page stand-in whose goto raises the queued errors in order."""

    def __init__(self, errors):
        self.errors = list(errors)
        self.url = "about:blank"
        self.goto_calls = 0

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        self.url = url

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

@pytest_asyncio.fixture
async def chromium_agent(fast_settings):
    agent = BrowserAgent(fast_settings)
    try:
        await agent.start()
    except PlaywrightError as e:
        await agent.close()
        pytest.skip(f"Chromium not available: {e}")
    yield agent
    await agent.close()

# --- retry helpers -----------------------------------------------------------------

def test_transient_network_errors():
    assert is_transient_network_error(PlaywrightError("net::ERR_CONNECTION_RESET at https://auction.test/"))
    assert is_transient_network_error(PlaywrightError("net::ERR_HTTP2_PROTOCOL_ERROR"))
    assert not is_transient_network_error(PlaywrightTimeout("Timeout 30000ms exceeded"))

def test_retry_delay_is_capped():
    config = RetryConfig(initial_delay=1.0, max_delay=5.0, jitter=False)
    assert config.calculate_delay(0) == 1.0
    assert config.calculate_delay(2) == 4.0
    assert config.calculate_delay(10) == 5.0

@pytest.mark.asyncio
async def test_retry_async_retries_only_matching_errors():
    calls = []

    @retry_async(RetryConfig(max_retries=2, initial_delay=0.001), should_retry=is_transient_network_error)
    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise PlaywrightError("net::ERR_CONNECTION_RESET")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3

    @retry_async(RetryConfig(max_retries=2, initial_delay=0.001), should_retry=is_transient_network_error)
    async def broken():
        calls.append(1)
        raise PlaywrightError("Target page, context or browser has been closed")

    calls.clear()
    with pytest.raises(PlaywrightError):
        await broken()
    assert len(calls) == 1

# --- navigation --------------------------------------------------------------------

@pytest.mark.asyncio
async def test_navigate_timeout_becomes_navigation_timeout(fast_settings):
    agent = BrowserAgent(fast_settings)
    agent.page = ScriptedPage([PlaywrightTimeout("Timeout 30000ms exceeded")])

    with pytest.raises(NavigationTimeout) as excinfo:
        await agent.navigate("https://auction.test/")

    assert excinfo.value.diagnostic["url"] == "https://auction.test/"
    assert agent.page.goto_calls == 1

@pytest.mark.asyncio
async def test_navigate_success(fast_settings):
    agent = BrowserAgent(fast_settings)
    agent.page = ScriptedPage([])

    result = await agent.navigate("https://auction.test/")

    assert result == {"status": "success", "url": "https://auction.test/"}

@pytest.mark.asyncio
async def test_close_is_idempotent(fast_settings):
    agent = BrowserAgent(fast_settings)
    await agent.close()
    await agent.close()
    assert agent.browser is None

# --- real browser ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resolver_finds_login_fields_in_iframe(chromium_agent):
    page = chromium_agent.page
    await page.set_content(LOGIN_PAGE)
    await page.wait_for_selector("iframe#login")
    await page.frame_locator("iframe#login").locator("input[name='userId']").wait_for()

    username = await resolve("login_username", get_candidates("login_username"), page, timeout_ms=2000, visible=True)
    password = await resolve("login_password", get_candidates("login_password"), page, timeout_ms=2000, visible=True)
    marker = await resolve("logged_in_marker", get_candidates("logged_in_marker"), page, timeout_ms=100)

    assert username.selector == "input[name='userId']"
    assert username.frame_url == "about:srcdoc"
    assert password.selector == "input[name='passwd']"
    assert not marker
    assert "about:srcdoc" in marker.frames
