#!/usr/bin/env python3
"""
Test script for the import entry point.
Runs URL import, AI text import, saving and association reads end to end
against an in-memory database with the network mocked out.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import requests

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))

from models import ImageFetchResult
from services.ai_service import AIService, GenerationProvider
from services.database_service import DatabaseService
from services.import_service import (
    ImportService, AI_UNAVAILABLE_MESSAGE, FETCH_FAILED_MESSAGE, INVALID_URL_MESSAGE,
    NO_STRUCTURED_DATA_MESSAGE, UNEXPECTED_ERROR_MESSAGE
)
from services.ingredient_service import IngredientService
from services.parsing_service import ParsingService
from services.scraping_service import ScrapingService
from utils import Config

RECIPE_URL = "https://example.se/recept/pannkaka"


def page_with_recipe(recipe: dict) -> str:
    return (f'<html><head><script type="application/ld+json">{json.dumps(recipe)}</script></head>'
            f'<body><p>{recipe.get("name", "")}</p></body></html>')


def mjol_recipe() -> dict:
    return {
        "@type": "Recipe",
        "name": "Enkel smet",
        "image": "https://example.se/smet.jpg",
        "recipeIngredient": ["2 dl Mjöl", "1 dl Mjölk"],
        "recipeInstructions": [{"@type": "HowToStep", "text": "Blanda mjöl och mjölk."}],
    }


class FakeImageService:
    def __init__(self):
        self.urls = []

    def fetch_image(self, url):
        self.urls.append(url)
        return ImageFetchResult(success=True, image_id="bild.jpg", content_type="image/jpeg", size_bytes=10)


class FakeProvider(GenerationProvider):
    def __init__(self, response):
        self.response = response

    def generate(self, prompt, schema, schema_name):
        return self.response


def create_import_service(html=None, fetch_error=None, ai_response=None, **config_overrides):
    config = Config(render_enabled=False, **config_overrides)
    db = DatabaseService(":memory:")
    db.create_food("Mjöl")
    db.create_food("Mjölk")
    db.create_unit("deciliter", plural="deciliter", abbreviation="dl")

    scraping = ScrapingService(config)
    scraping.session = MagicMock()
    if fetch_error is not None:
        scraping.session.get.side_effect = fetch_error
    else:
        response = MagicMock()
        response.headers = {"content-type": "text/html; charset=utf-8"}
        response.text = html or ""
        response.raise_for_status.return_value = None
        scraping.session.get.return_value = response

    ai = AIService(config, provider=FakeProvider(ai_response)) if ai_response is not None else None
    images = FakeImageService()
    service = ImportService(config, db, scraping, ParsingService(config),
                            IngredientService(db, config), ai_service=ai, image_service=images)
    return service, db, images


def test_import_mjol_mjolk_scenario():
    """Test a clean JSON-LD recipe imports with no low-confidence markers"""
    print("Testing Mjöl/Mjölk import...")

    service, db, images = create_import_service(html=page_with_recipe(mjol_recipe()))
    result = service.import_from_url(RECIPE_URL, user_id="user-1")

    assert result.success, result.error
    assert result.source_url == RECIPE_URL
    assert len(result.data.ingredients) == 2
    assert len(result.data.steps) == 1
    assert result.low_confidence_indices == []
    assert [line.name for line in result.data.ingredients] == ["Mjöl", "Mjölk"]
    assert all(line.food_id is not None for line in result.data.ingredients)
    assert images.urls == [], "Nothing is downloaded before saving"
    print("[OK] Import succeeded without markers")


def test_low_confidence_indices_combine_parse_and_resolution():
    recipe = mjol_recipe()
    recipe["recipeIngredient"] = ["2 dl Mjöl", "salt", "3 st potatisar"]
    service, db, images = create_import_service(html=page_with_recipe(recipe), create_pending_foods=False)
    result = service.import_from_url(RECIPE_URL)

    assert result.success
    assert result.low_confidence_indices == [1, 2]
    assert any("salt" in warning for warning in result.warnings)
    print("[OK] Parse and resolution markers merged")


def test_import_failures_are_results():
    """Test failures come back as ImportResult errors, never exceptions"""
    print("Testing import failures...")

    service, _, _ = create_import_service(html="<html><body><p>Bara text om mat.</p></body></html>")
    result = service.import_from_url(RECIPE_URL)
    assert not result.success
    assert result.error == NO_STRUCTURED_DATA_MESSAGE
    assert "Bara text om mat." in result.page_text
    print("[OK] Page without recipe offers AI import")

    result = service.import_from_url("ftp://example.se/recept")
    assert not result.success
    assert result.error == INVALID_URL_MESSAGE

    service, _, _ = create_import_service(fetch_error=requests.exceptions.ConnectionError("refused"))
    result = service.import_from_url(RECIPE_URL)
    assert not result.success
    assert result.error == FETCH_FAILED_MESSAGE
    print("[OK] Fetch failures reported")


def test_save_fetches_image_after_save():
    """Test saving persists the recipe and only then downloads the image"""
    print("Testing save path...")

    service, db, images = create_import_service(html=page_with_recipe(mjol_recipe()))
    recipe = service.import_from_url(RECIPE_URL, user_id="user-1").data

    saved = service.save_imported_recipe(recipe, owner="user-1")
    assert saved.success
    assert images.urls == ["https://example.se/smet.jpg"]
    assert db.get_recipe_image(saved.recipe_id) == "bild.jpg"

    loaded = db.get_recipe(saved.recipe_id)
    assert [line.food_id for line in loaded.ingredients] == [line.food_id for line in recipe.ingredients]
    print("[OK] Recipe and image saved")

    duplicate = service.save_imported_recipe(recipe, owner="user-1")
    assert not duplicate.success
    assert duplicate.error_code == "duplicate"
    assert duplicate.error
    assert images.urls == ["https://example.se/smet.jpg"], "No image download after a failed save"
    print("[OK] Duplicate save reported by code")


def test_associations_on_read():
    service, db, _ = create_import_service(html=page_with_recipe(mjol_recipe()))
    recipe = service.import_from_url(RECIPE_URL).data
    recipe_id = service.save_imported_recipe(recipe).recipe_id

    loaded, associations = service.get_recipe_with_associations(recipe_id)
    assert loaded.name == "Enkel smet"
    assert len(associations) == 1
    assert [ref.name for ref in associations[0].ingredients] == ["Mjöl", "Mjölk"]
    assert [ref.ingredient_id for ref in associations[0].ingredients] == [line.id for line in loaded.ingredients]

    assert service.get_recipe_with_associations(9999) == (None, [])
    print("[OK] Associations computed on read")


def test_import_from_text():
    """Test AI import of free text resolves ingredients like a URL import"""
    print("Testing text import...")

    generated = {
        "recipe_name": "Smet",
        "description": "",
        "ingredient_groups": [{"group_name": "", "ingredients": [
            {"name": "mjölk", "measurement": "dl", "quantity": "6"},
            {"name": "saffran", "measurement": "g", "quantity": "0.5"},
        ]}],
        "instruction_groups": [{"group_name": "", "instructions": [{"step": "Vispa."}]}],
    }
    service, _, _ = create_import_service(ai_response=generated, create_pending_foods=False)
    result = service.import_from_text("Smet: 6 dl mjölk, 0,5 g saffran. Vispa.", source_url=RECIPE_URL)

    assert result.success
    assert result.data.source_url == RECIPE_URL
    assert [line.name for line in result.data.ingredients] == ["Mjölk", "saffran"]
    assert result.low_confidence_indices == [1]
    print("[OK] Text import resolved")

    service, _, _ = create_import_service()
    result = service.import_from_text("Något recept")
    assert not result.success
    assert result.error == AI_UNAVAILABLE_MESSAGE

    service, _, _ = create_import_service(ai_response={"description": "saknar namn"})
    result = service.import_from_text("Något recept")
    assert not result.success
    assert "recipe_name" in result.error
    print("[OK] Text import failures reported")



def test_processing_failures_are_results():
    """Test both import paths turn a failing resolver into an error result"""
    print("Testing processing failures...")

    generated = {
        "recipe_name": "Potatisgratäng",
        "ingredient_groups": [{"group_name": "", "ingredients": [
            {"name": "potatis", "measurement": "g", "quantity": "800"},
        ]}],
        "instruction_groups": [{"group_name": "", "instructions": [{"step": "Skiva potatisen."}]}],
    }
    service, _, _ = create_import_service(html=page_with_recipe(mjol_recipe()), ai_response=generated,
                                          create_pending_foods=False)
    result = service.import_from_text("Potatisgratäng: 800 g potatis.")
    assert result.success
    assert [line.name for line in result.data.ingredients] == ["potatis"]
    assert result.data.ingredients[0].food_id is None
    assert result.low_confidence_indices == [0]
    print("[OK] Unmatched ingredient kept as written")

    service.ingredients.resolve_recipe = MagicMock(side_effect=RuntimeError("resolver down"))
    result = service.import_from_text("Potatisgratäng: 800 g potatis.")
    assert not result.success
    assert result.error == UNEXPECTED_ERROR_MESSAGE
    assert result.page_text == "Potatisgratäng: 800 g potatis."

    result = service.import_from_url(RECIPE_URL)
    assert not result.success
    assert result.error == UNEXPECTED_ERROR_MESSAGE
    print("[OK] Resolver failures reported, not raised")

if __name__ == "__main__":
    print("Running import service tests...\n")
    test_import_mjol_mjolk_scenario()
    test_low_confidence_indices_combine_parse_and_resolution()
    test_import_failures_are_results()
    test_save_fetches_image_after_save()
    test_associations_on_read()
    test_import_from_text()
    test_processing_failures_are_results()
    print("\nAll tests passed!")
