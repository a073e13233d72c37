#!/usr/bin/env python3
"""
Test script for source extraction.
Tests the site handler -> structured data -> rendered page fallback chain
without touching the network.
"""

import base64
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))

from services.errors import FetchError, InvalidSourceError
from services.html_extractor import extract_recipe_from_html, extract_page_text, find_recipe_node
from services.scraping_service import ScrapingService
from services.site_handlers import ProvechoHandler, find_site_handler
from utils import Config

RECIPE_JSON_LD = {
    "@context": "https://schema.org",
    "@type": "Recipe",
    "name": "Kanelbullar",
    "recipeIngredient": ["5 dl mjölk", "50 g jäst"],
    "recipeInstructions": [{"@type": "HowToStep", "text": "Värm mjölken."}],
}


def page_with_json_ld(data) -> str:
    return f"""<html><head><title>Recept</title>
<script type="application/ld+json">{json.dumps(data)}</script>
</head><body><p>Recept</p></body></html>"""


PLAIN_PAGE = """<html><head>
<meta property="og:image" content="https://example.se/bild.jpg">
</head><body><nav>Meny</nav><main><h1>Mormors köttbullar</h1>
<p>500 g köttfärs</p><p>Rulla bullar och stek dem.</p></main></body></html>"""


class FakeRenderer:
    """Stands in for the headless browser"""

    def __init__(self, html=None, error=None):
        self.html = html
        self.error = error
        self.calls = []

    def render(self, url: str) -> str:
        self.calls.append(url)
        if self.error:
            raise FetchError(self.error)
        return self.html


def make_response(html: str, content_type: str = "text/html; charset=utf-8"):
    response = MagicMock()
    response.headers = {"content-type": content_type}
    response.text = html
    response.raise_for_status.return_value = None
    return response


def make_service(renderer=None, html=None, error=None) -> ScrapingService:
    service = ScrapingService(Config(render_enabled=False), renderer=renderer)
    service.session = MagicMock()
    if error is not None:
        service.session.get.side_effect = error
    else:
        service.session.get.return_value = make_response(html)
    return service


def test_structured_data_in_fetched_markup():
    """Test JSON-LD found in the direct fetch short-circuits the chain"""
    print("Testing structured data extraction...")

    renderer = FakeRenderer(html="<html></html>")
    service = make_service(renderer, html=page_with_json_ld(RECIPE_JSON_LD))
    result = service.extract("https://example.se/kanelbullar")

    assert result.success
    assert result.strategy == "structured_data:json_ld"
    assert result.recipe_data["name"] == "Kanelbullar"
    assert renderer.calls == [], "Renderer must not run after a success"
    print("[OK] JSON-LD extracted without rendering")


def test_render_fallback():
    """Test rendered page is used when fetched markup has no recipe"""
    print("Testing render fallback...")

    renderer = FakeRenderer(html=page_with_json_ld(RECIPE_JSON_LD))
    service = make_service(renderer, html=PLAIN_PAGE)
    result = service.extract("https://example.se/kanelbullar")

    assert result.success
    assert result.strategy == "rendered"
    assert result.recipe_data["name"] == "Kanelbullar"
    assert renderer.calls == ["https://example.se/kanelbullar"]
    assert service.session.get.call_count == 1
    print("[OK] Recipe extracted from rendered page")


def test_render_fallback_after_fetch_failure():
    """Test a failed direct fetch still tries the renderer"""
    renderer = FakeRenderer(html=page_with_json_ld(RECIPE_JSON_LD))
    service = make_service(renderer, error=requests.exceptions.ConnectionError("refused"))
    result = service.extract("https://example.se/kanelbullar")

    assert result.success
    assert result.strategy == "rendered"
    print("[OK] Render succeeded after fetch failure")


def test_soft_failure_captures_page_text():
    """Test a page without a recipe returns page text instead of raising"""
    print("Testing soft failure...")

    renderer = FakeRenderer(html=PLAIN_PAGE)
    service = make_service(renderer, html=PLAIN_PAGE)
    result = service.extract("https://example.se/kottbullar")

    assert not result.success
    assert result.recipe_data is None
    assert result.page_text.startswith("[Receptbild: https://example.se/bild.jpg]")
    assert "Mormors köttbullar" in result.page_text
    assert "Meny" not in result.page_text
    assert any("No schema.org Recipe" in error for error in result.errors)
    print("[OK] Page text captured for AI import")


def test_fetch_error_when_every_strategy_fails():
    """Test FetchError only when both fetch and render fail"""
    print("Testing total failure...")

    renderer = FakeRenderer(error="browser crashed")
    service = make_service(renderer, error=requests.exceptions.Timeout("slow"))
    with pytest.raises(FetchError):
        service.extract("https://example.se/recept")

    service = make_service(None, error=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(FetchError):
        service.extract("https://example.se/recept")
    print("[OK] FetchError raised")


def test_non_html_content_is_a_fetch_failure():
    """Test a non-HTML response counts as a failed fetch"""
    service = ScrapingService(Config(render_enabled=False))
    service.session = MagicMock()
    service.session.get.return_value = make_response("%PDF", content_type="application/pdf")
    with pytest.raises(FetchError):
        service.extract("https://example.se/recept.pdf")
    print("[OK] Non-HTML rejected")


def test_invalid_url_raises_before_network():
    """Test unsupported URLs are rejected without any request"""
    print("Testing URL validation...")

    service = make_service(None, html=PLAIN_PAGE)
    for url in ["ftp://example.se/recept", "example.se/recept", "", "https://"]:
        with pytest.raises(InvalidSourceError):
            service.extract(url)
    assert service.session.get.call_count == 0
    print("[OK] Invalid URLs rejected")


def test_find_recipe_node_shapes():
    """Test Recipe lookup in lists, @graph and multi-typed nodes"""
    graph = {"@graph": [{"@type": "WebPage"}, {"@type": ["Recipe", "NewsArticle"], "name": "Soppa"}]}
    assert find_recipe_node(graph)["name"] == "Soppa"
    assert find_recipe_node([{"@type": "Person"}, RECIPE_JSON_LD])["name"] == "Kanelbullar"
    assert find_recipe_node({"@type": "WebPage"}) is None
    print("[OK] Recipe node located")


def test_microdata_recipe():
    """Test microdata markup is read into the JSON-LD shape"""
    html = """<div itemscope itemtype="https://schema.org/Recipe">
<h1 itemprop="name">Ärtsoppa</h1>
<meta itemprop="prepTime" content="PT15M">
<span itemprop="author" itemscope itemtype="https://schema.org/Person"><span itemprop="name">Olle</span></span>
<li itemprop="recipeIngredient">5 dl gula ärtor</li>
<li itemprop="recipeIngredient">1 st lök</li>
<div itemprop="recipeInstructions"><ol><li>Blötlägg ärtorna.</li><li>Koka soppan.</li></ol></div>
</div>"""
    data, markup_format = extract_recipe_from_html(html)

    assert markup_format == "microdata"
    assert data["name"] == "Ärtsoppa"
    assert data["prepTime"] == "PT15M"
    assert data["author"] == "Olle"
    assert data["recipeIngredient"] == ["5 dl gula ärtor", "1 st lök"]
    assert data["recipeInstructions"] == ["Blötlägg ärtorna.", "Koka soppan."]
    print("[OK] Microdata extracted")


def encode_provecho(recipe: dict) -> str:
    key = ProvechoHandler.XOR_KEY
    plain = json.dumps(recipe)
    mixed = ''.join(chr(ord(ch) ^ ord(key[i % len(key)])) for i, ch in enumerate(plain))
    return base64.b64encode(mixed.encode('utf-8')).decode('ascii')


def test_provecho_site_handler():
    """Test the site handler decodes the embedded payload"""
    print("Testing Provecho site handler...")

    payload = {
        "name": "Bowl",
        "authorUsername": "chef",
        "images": ["https://provecho.co/bowl.jpg"],
        "subRecipes": [
            {"tabname": "Bowl", "ingredients": [{"qty": 1, "unit": "cup", "text": "rice"}],
             "directions": [{"text": "Cook the rice."}]},
            {"tabname": "Dressing", "ingredients": [{"text": "For the dressing:"},
                                                    {"qty": 2, "unit": "tbsp", "text": "soy sauce"}],
             "directions": [{"text": "Dressing:"}, {"text": "Whisk the soy sauce."}]},
        ],
    }
    next_data = {"props": {"pageProps": {"encodedRecipe": encode_provecho(payload)}}}
    html = f'<html><body><script id="__NEXT_DATA__" type="application/json">{json.dumps(next_data)}</script></body></html>'

    assert isinstance(find_site_handler("www.provecho.co"), ProvechoHandler)
    assert find_site_handler("example.se") is None

    service = make_service(FakeRenderer(html="<html></html>"), html=html)
    result = service.extract("https://www.provecho.co/recipe/bowl")

    assert result.success
    assert result.strategy == "site_handler:provecho"
    data = result.recipe_data
    assert data["recipeIngredient"] == ["Bowl:", "1 cup rice", "Dressing:", "2 tbsp soy sauce"]
    assert data["recipeInstructions"][1]["name"] == "Dressing"
    assert data["recipeInstructions"][1]["itemListElement"] == [{"@type": "HowToStep", "text": "Whisk the soy sauce."}]
    assert data["author"] == {"name": "chef"}
    print("[OK] Provecho payload decoded")

    text = ProvechoHandler().extract_text(html)
    assert text.startswith("Title: Bowl")
    assert "- 2 tbsp soy sauce" in text
    print("[OK] Provecho text rendering")


def test_extract_page_text_prefers_main_content():
    long_article = "<article>" + "<p>Stek löken mjuk i smör.</p>" * 20 + "</article>"
    html = f"<html><body><aside>Reklam</aside>{long_article}<footer>Kontakt</footer></body></html>"
    text = extract_page_text(html)
    assert "Stek löken" in text
    assert "Reklam" not in text
    assert "Kontakt" not in text
    print("[OK] Main content extracted")


if __name__ == "__main__":
    print("Running scraping tests...\n")
    test_structured_data_in_fetched_markup()
    test_render_fallback()
    test_render_fallback_after_fetch_failure()
    test_soft_failure_captures_page_text()
    test_fetch_error_when_every_strategy_fails()
    test_non_html_content_is_a_fetch_failure()
    test_invalid_url_raises_before_network()
    test_find_recipe_node_shapes()
    test_microdata_recipe()
    test_provecho_site_handler()
    test_extract_page_text_prefers_main_content()
    print("\nAll tests passed!")
