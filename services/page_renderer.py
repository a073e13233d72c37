"""
Headless browser rendering for pages that build their content with JavaScript.

Used only as the last extraction strategy. Each render launches and closes
its own browser so no browser process outlives a request.
"""

from typing import Optional

from playwright.sync_api import sync_playwright, Error as PlaywrightError

from services.errors import FetchError
from utils import Config, get_logger

logger = get_logger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


class PageRenderer:
    """
    Renders a URL in headless Chromium and returns the resulting DOM as HTML.
    """

    def __init__(self, config: Config):
        self.config = config
        self.timeout_ms = config.render_timeout_seconds * 1000

    def render(self, url: str) -> str:
        """
        Render url and return the page HTML after scripts have run.

        Raises:
            FetchError: the browser could not load the page
        """
        logger.info(f"Rendering page with headless browser: {url}")
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True)
                try:
                    context = browser.new_context(
                        user_agent=BROWSER_USER_AGENT,
                        locale=self.config.render_locale,
                        viewport={'width': 1920, 'height': 1080},
                        extra_http_headers={'Accept-Language': self.config.accept_language}
                    )
                    page = context.new_page()
                    page.set_default_timeout(self.timeout_ms)
                    page.goto(url, wait_until='load')
                    self._wait_for_content(page)
                    html = page.content()
                    context.close()
                finally:
                    browser.close()
        except PlaywrightError as e:
            logger.warning(f"Render failed for {url}: {e}")
            raise FetchError(f"Could not render {url}: {e}") from e

        return html

    def _wait_for_content(self, page, min_length: int = 200):
        """Give client-side rendering a chance to produce readable text"""
        try:
            page.wait_for_function(
                f"() => (document.body && document.body.innerText.length || 0) > {min_length}",
                timeout=min(self.timeout_ms, 15000)
            )
        except PlaywrightError:
            logger.debug("Page text stayed short; continuing with what rendered")
        try:
            page.wait_for_selector('script[type="application/ld+json"]', state='attached', timeout=2000)
        except PlaywrightError:
            logger.debug("No JSON-LD script appeared after render")


def get_page_renderer(config: Config) -> Optional[PageRenderer]:
    """Factory returning a renderer, or None when rendering is disabled"""
    if not config.render_enabled:
        return None
    return PageRenderer(config)
