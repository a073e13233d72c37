"""
Site-specific recipe handlers.

Some sites embed their recipe in a proprietary payload instead of schema.org
markup. A handler turns the page HTML into the same JSON-LD dict shape the
generic scan produces, so normalization does not care where it came from.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from utils import get_logger

logger = get_logger(__name__)


class SiteHandler:
    """Base class for site handlers; hostnames are matched without 'www.'"""

    name = "generic"
    hostnames: tuple = ()

    def extract_recipe(self, html: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def extract_text(self, html: str) -> Optional[str]:
        return None


def _is_section_header(text: str) -> bool:
    return text.strip().endswith(':')


class ProvechoHandler(SiteHandler):
    """
    provecho.co ships the recipe XOR-obfuscated and base64-encoded in
    ``__NEXT_DATA__.props.pageProps.encodedRecipe``.
    """

    name = "provecho"
    hostnames = ("provecho.co",)
    XOR_KEY = "lkdsoisadfgkljnsdfglaish"

    def decode(self, encoded: str) -> Optional[Dict[str, Any]]:
        try:
            decoded = base64.b64decode(encoded).decode('utf-8', errors='replace')
            key = self.XOR_KEY
            plain = ''.join(chr(ord(ch) ^ ord(key[i % len(key)])) for i, ch in enumerate(decoded))
            return json.loads(plain)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Failed to decode Provecho payload: {e}")
            return None

    def _load(self, html: str) -> Optional[Dict[str, Any]]:
        soup = BeautifulSoup(html or "", 'html.parser')
        script = soup.find('script', id='__NEXT_DATA__')
        if script is None or not script.string:
            return None

        try:
            next_data = json.loads(script.string)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed __NEXT_DATA__ on Provecho page: {e}")
            return None

        encoded = ((next_data.get('props') or {}).get('pageProps') or {}).get('encodedRecipe')
        if not encoded:
            return None

        recipe = self.decode(encoded)
        if not recipe or not recipe.get('name'):
            return None
        return recipe

    @staticmethod
    def _format_ingredient(ingredient: Dict[str, Any]) -> Optional[str]:
        text = (ingredient.get('text') or "").strip()
        qty = ingredient.get('qty')
        if not qty and _is_section_header(text):
            return None
        parts = [str(qty) if qty else "", ingredient.get('unit') or "", text]
        line = " ".join(p for p in parts if p).strip()
        return line or None

    @staticmethod
    def _directions(sub_recipe: Dict[str, Any]) -> List[str]:
        steps = []
        for direction in sub_recipe.get('directions') or []:
            text = (direction.get('text') or "").strip()
            if not text:
                continue
            if _is_section_header(text) and len(text) < 40:
                continue
            steps.append(text)
        return steps

    def extract_recipe(self, html: str) -> Optional[Dict[str, Any]]:
        recipe = self._load(html)
        if recipe is None:
            return None

        sub_recipes = recipe.get('subRecipes') or []
        # Tab names only carry meaning when a recipe has several parts
        use_sections = len(sub_recipes) > 1

        ingredients: List[str] = []
        instructions: List[Dict[str, Any]] = []
        for sub in sub_recipes:
            tab_name = (sub.get('tabname') or "").strip() if use_sections else ""
            if tab_name:
                ingredients.append(f"{tab_name}:")

            for ingredient in sub.get('ingredients') or []:
                line = self._format_ingredient(ingredient)
                if line:
                    ingredients.append(line)

            steps = [{'@type': 'HowToStep', 'text': text} for text in self._directions(sub)]
            if tab_name and steps:
                instructions.append({'@type': 'HowToSection', 'name': tab_name, 'itemListElement': steps})
            else:
                instructions.extend(steps)

        images = recipe.get('images') or []
        result: Dict[str, Any] = {
            '@type': 'Recipe',
            'name': recipe['name'],
            'description': recipe.get('description') or None,
            'image': images[0] if images else None,
            'author': {'name': recipe['authorUsername']} if recipe.get('authorUsername') else None,
            'totalTime': recipe.get('totalTime') or None,
            'cookTime': recipe.get('timeToCook') or None,
            'prepTime': recipe.get('timeToPrep') or None,
            'recipeIngredient': ingredients or None,
            'recipeInstructions': instructions or None,
        }
        return {key: value for key, value in result.items() if value is not None}

    def extract_text(self, html: str) -> Optional[str]:
        """Readable text rendering of the payload for the AI import path"""
        recipe = self._load(html)
        if recipe is None:
            return None

        images = recipe.get('images') or []
        header = [
            f"Title: {recipe['name']}",
            recipe.get('description') and f"Description: {recipe['description']}",
            recipe.get('authorUsername') and f"Author: {recipe['authorUsername']}",
            images and f"[Receptbild: {images[0]}]",
            recipe.get('totalTime') and f"Total time: {recipe['totalTime']}",
            recipe.get('timeToPrep') and f"Prep time: {recipe['timeToPrep']}",
            recipe.get('timeToCook') and f"Cook time: {recipe['timeToCook']}",
        ]
        lines = [line for line in header if line]

        for sub in recipe.get('subRecipes') or []:
            ingredients = [self._format_ingredient(i) for i in sub.get('ingredients') or []]
            lines.extend(["", "Ingredients:"])
            lines.extend(f"- {line}" for line in ingredients if line)
            lines.extend(["", "Instructions:"])
            lines.extend(f"{i}. {text}" for i, text in enumerate(self._directions(sub), start=1))

        return "\n".join(lines)


DEFAULT_HANDLERS = (ProvechoHandler(),)


def find_site_handler(hostname: str, handlers=DEFAULT_HANDLERS) -> Optional[SiteHandler]:
    """Match a handler by exact hostname, ignoring a leading 'www.'"""
    domain = (hostname or "").lower()
    if domain.startswith('www.'):
        domain = domain[4:]

    for handler in handlers:
        if domain in handler.hostnames:
            return handler
    return None
