from playwright.async_api import async_playwright, Page, Browser, BrowserContext, TimeoutError as PlaywrightTimeout
from auction_bot.core.config import Settings, settings as default_settings
from auction_bot.core.errors import NavigationTimeout
from auction_bot.core.retry import retry_async, RetryConfig, is_transient_network_error
from auction_bot.core.logger import logger, log_action
import time

STEALTH_SCRIPT = """
    // Remove webdriver property
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['ja-JP', 'ja']
    });

    window.chrome = {
        runtime: {}
    };
"""

class BrowserAgent:
    """One Chromium browser, context and page, owned by a single search job.

    Use as `async with BrowserAgent() as agent:`; the browser is released on
    every exit path, including cancellation.
    """

    def __init__(self, config: Settings = None):
        self.settings = config or default_settings
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.page: Page | None = None
        self.playwright = None

    async def __aenter__(self) -> "BrowserAgent":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    async def start(self):
        """Initialize browser instance."""
        if self.browser is not None:
            return

        self.playwright = await async_playwright().start()

        launch_options = {
            'headless': self.settings.headless,
            'args': [
                '--disable-blink-features=AutomationControlled',
                '--disable-dev-shm-usage',
                '--no-sandbox',
            ],
        }
        if self.settings.browser_executable_path:
            launch_options['executable_path'] = self.settings.browser_executable_path

        try:
            self.browser = await self.playwright.chromium.launch(**launch_options)
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            raise

        self.context = await self.browser.new_context(
            viewport={'width': 1366, 'height': 900},
            user_agent='Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
            locale='ja-JP',
            timezone_id='Asia/Tokyo',
        )
        await self.context.add_init_script(STEALTH_SCRIPT)
        self.context.set_default_timeout(self.settings.browser_timeout)
        self.page = await self.context.new_page()
        log_action("browser_start", status="success")

    async def close(self):
        """Close browser instance. Safe to call more than once."""
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
        finally:
            if self.playwright:
                await self.playwright.stop()
            self.browser = None
            self.context = None
            self.page = None
            self.playwright = None

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> dict:
        """Open a URL; transient network errors are retried, timeouts raise NavigationTimeout."""
        if not self.page:
            await self.start()

        start = time.monotonic()
        try:
            await self._goto(url, wait_until)
        except PlaywrightTimeout as e:
            log_action("navigate", url=url, status="error")
            raise NavigationTimeout(f"Timed out opening {url}", diagnostic={"url": url, "error": str(e)})

        await wait_for_network_idle(self.page, timeout=5000)
        log_action("navigate", url=self.page.url, status="success",
                   duration_ms=int((time.monotonic() - start) * 1000))
        return {"status": "success", "url": self.page.url}

    @retry_async(RetryConfig(max_retries=2, initial_delay=2.0), should_retry=is_transient_network_error)
    async def _goto(self, url: str, wait_until: str):
        await self.page.goto(url, wait_until=wait_until, timeout=self.settings.browser_timeout)

async def wait_for_network_idle(page: Page, timeout: int = 5000) -> bool:
    """
    Wait for network to become idle.

    Busy pages never reach networkidle; that is not an error.
    """
    try:
        await page.wait_for_load_state('networkidle', timeout=timeout)
        return True
    except PlaywrightTimeout:
        logger.debug(f"Network didn't become idle within {timeout}ms, continuing anyway")
        return False
