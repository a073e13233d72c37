"""
Source extraction service for the Kokbok recipe pipeline.

Turns a recipe URL into a raw structured description (or, failing that,
visible page text) through one sequential fallback chain:

    site handler -> structured data in fetched markup -> rendered page

Each strategy is tried at most once and the first success wins. A page
without a recipe is a soft failure; only a run where every attempted
transport failed raises FetchError.
"""

from typing import Optional, Tuple
from urllib.parse import urlparse

import requests

from models import ExtractionResult
from services.errors import FetchError, InvalidSourceError, NoStructuredDataError
from services.html_extractor import extract_recipe_from_html, extract_page_text
from services.page_renderer import PageRenderer, get_page_renderer
from services.site_handlers import DEFAULT_HANDLERS, SiteHandler, find_site_handler
from utils import Config, get_logger

logger = get_logger(__name__)

STRATEGY_SITE_HANDLER = "site_handler"
STRATEGY_STRUCTURED_DATA = "structured_data"
STRATEGY_RENDERED = "rendered"


class ScrapingService:
    """
    Source Extractor: URL -> schema.org Recipe dict or captured page text.

    Network side effects are strictly sequential: one direct fetch, then at
    most one headless render.
    """

    def __init__(self, config: Config, renderer: Optional[PageRenderer] = None,
                 handlers=DEFAULT_HANDLERS):
        self.config = config
        self.renderer = renderer if renderer is not None else get_page_renderer(config)
        self.handlers = handlers
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': config.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'Accept-Language': config.accept_language
        })

    def extract(self, url: str) -> ExtractionResult:
        """
        Extract a raw recipe description from url.

        Args:
            url: http(s) recipe URL

        Returns:
            ExtractionResult; success=False with page_text when no strategy
            found a recipe

        Raises:
            InvalidSourceError: url is not http(s) or lacks a host
            FetchError: every attempted strategy failed at the transport level
        """
        if not self._is_valid_url(url):
            raise InvalidSourceError(f"Unsupported URL: {url!r}")

        result = ExtractionResult(success=False, url=url)
        handler = self._get_site_handler(url)

        html, fetch_failed = self._try_fetch(url, result)
        if html:
            try:
                data, strategy = self._scan(html, handler)
            except NoStructuredDataError as e:
                result.add_error(str(e), "fetch")
            else:
                logger.info(f"Extracted recipe from {url} via {strategy}")
                result.success = True
                result.recipe_data = data
                result.strategy = strategy
                return result

        render_failed = True
        rendered_text = None
        if self.renderer is not None:
            try:
                rendered = self.renderer.render(url)
            except FetchError as e:
                result.add_error(str(e), "render")
            else:
                render_failed = False
                rendered_text = extract_page_text(rendered)
                try:
                    data, _ = self._scan(rendered, None)
                except NoStructuredDataError as e:
                    result.add_error(str(e), "render")
                else:
                    logger.info(f"Extracted recipe from rendered page {url}")
                    result.success = True
                    result.recipe_data = data
                    result.strategy = STRATEGY_RENDERED
                    result.page_text = rendered_text
                    return result

        if fetch_failed and render_failed:
            raise FetchError(f"Could not retrieve {url}: {'; '.join(result.errors)}")

        result.page_text = rendered_text or (extract_page_text(html) if html else None)
        logger.info(f"No structured recipe found at {url}; page text captured: {bool(result.page_text)}")
        return result

    def fetch_page_text(self, url: str) -> str:
        """
        Fetch readable page text for text-based (AI) import.

        Raises:
            InvalidSourceError: url is not http(s) or lacks a host
            FetchError: no page content could be retrieved
        """
        if not self._is_valid_url(url):
            raise InvalidSourceError(f"Unsupported URL: {url!r}")

        scratch = ExtractionResult(success=False, url=url)
        handler = self._get_site_handler(url)

        html, _ = self._try_fetch(url, scratch)
        if html and handler is not None:
            text = handler.extract_text(html)
            if text:
                return text

        if self.renderer is not None:
            try:
                text = extract_page_text(self.renderer.render(url))
                if text:
                    return text
            except FetchError as e:
                scratch.add_error(str(e), "render")

        text = extract_page_text(html) if html else None
        if not text:
            raise FetchError(f"Could not retrieve page text for {url}: {'; '.join(scratch.errors)}")
        return text

    def _scan(self, html: str, handler: Optional[SiteHandler]) -> Tuple[dict, str]:
        """First recipe found by the site handler or the markup scan

        Raises:
            NoStructuredDataError: neither found a recipe
        """
        if handler is not None:
            data = handler.extract_recipe(html)
            if data:
                return data, f"{STRATEGY_SITE_HANDLER}:{handler.name}"
            logger.info(f"Site handler {handler.name} found no recipe; scanning markup")

        data, markup_format = extract_recipe_from_html(html)
        if data:
            return data, f"{STRATEGY_STRUCTURED_DATA}:{markup_format}"
        raise NoStructuredDataError("No schema.org Recipe in page markup")

    def _try_fetch(self, url: str, result: ExtractionResult) -> Tuple[Optional[str], bool]:
        try:
            return self._fetch_html(url), False
        except FetchError as e:
            logger.warning(f"Direct fetch failed for {url}: {e}")
            result.add_error(str(e), "fetch")
            return None, True

    def _fetch_html(self, url: str) -> str:
        """Fetch HTML content from URL; transport problems raise FetchError"""
        try:
            response = self.session.get(
                url,
                timeout=self.config.scraping_timeout_seconds,
                allow_redirects=True
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise FetchError(f"Request timeout for {url}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Request error for {url}: {e}") from e

        content_type = response.headers.get('content-type', '').lower()
        if content_type and 'html' not in content_type:
            raise FetchError(f"Non-HTML content type: {content_type}")

        # requests falls back to ISO-8859-1 when no charset is declared
        if 'charset' not in content_type:
            response.encoding = response.apparent_encoding or 'utf-8'
        return response.text

    def _get_site_handler(self, url: str) -> Optional[SiteHandler]:
        return find_site_handler(urlparse(url).hostname or "", self.handlers)

    def _is_valid_url(self, url: str) -> bool:
        """Validate URL format and scheme"""
        try:
            result = urlparse(url)
            return all([result.scheme in ['http', 'https'], result.netloc])
        except (TypeError, ValueError, AttributeError):
            return False


def get_scraping_service(config: Config) -> ScrapingService:
    """Factory function to get a scraping service instance"""
    return ScrapingService(config)
