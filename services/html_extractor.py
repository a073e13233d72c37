"""
Structured recipe data and visible text extraction from HTML.

Scans markup for a schema.org Recipe, first as JSON-LD and then as microdata,
and reduces rendered pages to their main readable text for the AI import
path. Pure functions over HTML strings; fetching happens in ScrapingService.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from utils import get_logger

logger = get_logger(__name__)

RECIPE_TYPE = "Recipe"

NOISE_SELECTORS = [
    "script", "style", "noscript", "nav", "header", "footer", "aside",
    "[role='navigation']", "[role='banner']", "[role='contentinfo']",
    ".sidebar", "#sidebar", ".widget-area", ".comments", "#comments",
    ".comment-respond", ".related-posts", ".share-buttons", ".social-share",
]

CONTENT_SELECTORS = [
    "main article",
    "article",
    "main",
    "[role='main']",
    ".entry-content",
    ".post-content",
    ".article-content",
    ".content-area",
    ".hentry",
    ".post",
    "#content",
    ".content",
    "#main",
    ".main",
]

MIN_CONTENT_LENGTH = 200


def _is_recipe(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    declared = node.get('@type')
    if isinstance(declared, list):
        return RECIPE_TYPE in declared
    return declared == RECIPE_TYPE


def find_recipe_node(data: Any) -> Optional[Dict[str, Any]]:
    """Locate a Recipe in a JSON-LD document (object, list or @graph)"""
    if _is_recipe(data):
        return data

    if isinstance(data, list):
        for item in data:
            found = find_recipe_node(item)
            if found:
                return found
        return None

    if isinstance(data, dict):
        for key in ('@graph', 'mainEntity'):
            if key in data:
                found = find_recipe_node(data[key])
                if found:
                    return found
    return None


def extract_json_ld_recipe(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for script in soup.find_all('script', type='application/ld+json'):
        content = script.string or script.get_text()
        if not content or not content.strip():
            continue
        try:
            data = json.loads(content, strict=False)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
            continue

        recipe = find_recipe_node(data)
        if recipe:
            return recipe
    return None


def _itemprop_value(element) -> str:
    for attribute in ('content', 'datetime'):
        if element.has_attr(attribute):
            return element[attribute].strip()
    if element.name == 'img' and element.has_attr('src'):
        return element['src'].strip()
    if element.name == 'meta':
        return ""
    return element.get_text(' ', strip=True)


def _own_props(scope, prop: str) -> List:
    """itemprop elements belonging to scope, not to a nested itemscope"""
    found = []
    for element in scope.find_all(attrs={'itemprop': prop}):
        parent = element.find_parent(attrs={'itemscope': True})
        if parent is scope:
            found.append(element)
    return found


def extract_microdata_recipe(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """
    Read a schema.org Recipe marked up with microdata into the JSON-LD dict shape.
    """
    scope = soup.find(attrs={'itemtype': lambda v: v and v.rstrip('/').endswith('schema.org/Recipe')})
    if scope is None:
        return None

    def first(prop: str) -> Optional[str]:
        for element in _own_props(scope, prop):
            value = _itemprop_value(element)
            if value:
                return value
        return None

    recipe: Dict[str, Any] = {'@type': RECIPE_TYPE}
    for prop in ('name', 'description', 'image', 'prepTime', 'cookTime', 'totalTime',
                 'recipeYield', 'recipeCuisine', 'recipeCategory'):
        value = first(prop)
        if value:
            recipe[prop] = value

    authors = _own_props(scope, 'author')
    if authors:
        author_name = authors[0].find(attrs={'itemprop': 'name'})
        recipe['author'] = _itemprop_value(author_name or authors[0])

    ingredients = [_itemprop_value(e) for e in _own_props(scope, 'recipeIngredient')]
    if not ingredients:
        ingredients = [_itemprop_value(e) for e in _own_props(scope, 'ingredients')]
    ingredients = [i for i in ingredients if i]
    if ingredients:
        recipe['recipeIngredient'] = ingredients

    steps = []
    for element in _own_props(scope, 'recipeInstructions'):
        items = element.find_all('li')
        if items:
            steps.extend(li.get_text(' ', strip=True) for li in items)
        else:
            text = element.get_text('\n', strip=True)
            if text:
                steps.append(text)
    steps = [s for s in steps if s]
    if steps:
        recipe['recipeInstructions'] = steps

    if not recipe.get('name') or not ingredients:
        return None
    return recipe


def extract_recipe_from_html(html: str) -> Tuple[Optional[Dict[str, Any]], str]:
    """
    Scan markup for a schema.org Recipe.

    Returns:
        (recipe dict or None, format name: "json_ld", "microdata" or "")
    """
    soup = BeautifulSoup(html or "", 'html.parser')

    recipe = extract_json_ld_recipe(soup)
    if recipe:
        return recipe, "json_ld"

    recipe = extract_microdata_recipe(soup)
    if recipe:
        return recipe, "microdata"

    return None, ""


def extract_page_text(html: str) -> Optional[str]:
    """
    Reduce a page to its readable main content.

    The page's share image (og:image or twitter:image) is prefixed as
    ``[Receptbild: url]`` so text-based parsing can still pick it up.
    """
    soup = BeautifulSoup(html or "", 'html.parser')

    image_url = None
    og_image = soup.find('meta', attrs={'property': 'og:image'})
    twitter_image = soup.find('meta', attrs={'name': 'twitter:image'})
    for meta in (og_image, twitter_image):
        if meta and meta.get('content'):
            image_url = meta['content'].strip()
            break

    for selector in NOISE_SELECTORS:
        for element in soup.select(selector):
            element.decompose()

    content = None
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element and len(element.get_text(strip=True)) > MIN_CONTENT_LENGTH:
            content = element
            break

    if content is None:
        content = soup.body or soup

    lines = [line.strip() for line in content.get_text('\n').split('\n')]
    text = '\n'.join(line for line in lines if line)

    if image_url:
        text = f"[Receptbild: {image_url}]\n\n{text}"
    return text or None
