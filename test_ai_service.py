#!/usr/bin/env python3
"""
Test script for AI meal planning and recipe parsing.
Uses a fake generation provider; no model server is needed.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))

from models import CompactRecipe, MealPlanPreferences
from services.ai_service import (
    AIService, GenerationProvider, LMStudioProvider, build_meal_plan_prompt, compute_slot_quota,
    format_catalog_line, recipe_from_generated
)
from services.errors import GenerationError
from utils import Config


def create_generated_recipe(name: str = "Linsgryta") -> dict:
    return {
        "recipe_name": name,
        "description": "Mustig gryta",
        "recipe_yield": "4 portioner",
        "prep_time": 10,
        "cook_time": 30,
        "categories": ["Vegetariskt", "Grytor"],
        "ingredient_groups": [
            {"group_name": "", "ingredients": [
                {"name": "röda linser", "measurement": "dl", "quantity": "3"},
                {"name": "vatten", "measurement": "dl", "quantity": "6"},
            ]},
            {"group_name": "Topping", "ingredients": [
                {"name": "yoghurt", "measurement": "dl", "quantity": "1"},
            ]},
        ],
        "instruction_groups": [
            {"group_name": "", "instructions": [{"step": "Koka linserna i vattnet."}]},
            {"group_name": "Topping", "instructions": [{"step": "Toppa med yoghurt."}]},
        ],
    }


class FakeProvider(GenerationProvider):
    """Returns a canned response and records prompts"""

    def __init__(self, response):
        self.response = response
        self.prompts = []

    def generate(self, prompt, schema, schema_name):
        self.prompts.append((prompt, schema_name))
        return self.response


CATALOG = [
    CompactRecipe(id="5", name="Köttbullar", categories=["Huvudrätt"], prep_time=10, cook_time=20, recipe_yield=4),
    CompactRecipe(id="8", name="Fiskgratäng", categories=["Fisk & skaldjur"]),
]


def test_compute_slot_quota():
    """Test new/existing split is exact and clamped"""
    print("Testing slot quota...")

    quota = compute_slot_quota([1, 2, 3, 4, 5, 6, 7], ["middag"], 3)
    assert (quota.total, quota.new, quota.existing) == (7, 3, 4)

    quota = compute_slot_quota([1, 2], ["lunch", "middag"], 10)
    assert (quota.total, quota.new, quota.existing) == (4, 4, 0)

    quota = compute_slot_quota([1], ["middag"], -2)
    assert (quota.total, quota.new, quota.existing) == (1, 0, 1)
    print("[OK] Quota computed")


def test_meal_plan_prompt():
    """Test the prompt embeds catalog, preferences and the exact quota"""
    print("Testing meal plan prompt...")

    assert format_catalog_line(CATALOG[0]) == "[5] Köttbullar (Huvudrätt 30min 4p)"
    assert format_catalog_line(CATALOG[1]) == "[8] Fiskgratäng (Fisk & skaldjur)"

    preferences = MealPlanPreferences(
        meal_types=["middag"], servings=2, days=[1, 3],
        category_weights={"Vegetariskt": 2, "Fisk & skaldjur": 1, "Kött": 0},
    )
    quota = compute_slot_quota(preferences.days, preferences.meal_types, 1)
    prompt = build_meal_plan_prompt(CATALOG, preferences, ["ris", "lök"], quota)

    assert "[5] Köttbullar" in prompt
    assert "exakt 2 entries totalt: exakt 1 ska vara nya" in prompt
    assert "exakt 1 ska vara befintliga" in prompt
    assert "måndag, onsdag" in prompt
    assert "Vegetariskt (2), Fisk & skaldjur (1)" in prompt
    assert "Kött (" not in prompt
    assert "Antal portioner per måltid: 2" in prompt
    assert "ris, lök" in prompt
    print("[OK] Mixed quota prompt")

    all_new = build_meal_plan_prompt(CATALOG, MealPlanPreferences(), None,
                                     compute_slot_quota(list(range(1, 8)), ["middag"], 7))
    assert "ALLA 7 entries ska vara nya" in all_new
    assert "måndag–söndag" in all_new

    only_existing = build_meal_plan_prompt(CATALOG, MealPlanPreferences(), None,
                                           compute_slot_quota(list(range(1, 8)), ["middag"], 0))
    assert "Välj ENBART recept från listan" in only_existing
    assert "Skafferiet" not in only_existing
    print("[OK] Quota wording follows the split")


def test_recipe_from_generated():
    """Test generated recipes convert to the canonical shape"""
    print("Testing generated recipe conversion...")

    recipe = recipe_from_generated(create_generated_recipe())
    assert recipe.name == "Linsgryta"
    assert recipe.recipe_yield == 4
    assert recipe.recipe_yield_name == "portioner"
    assert recipe.prep_time == 10
    assert [g.name for g in recipe.ingredient_groups] == [None, "Topping"]
    assert [line.name for line in recipe.ingredients] == ["röda linser", "vatten", "yoghurt"]
    assert recipe.ingredients[0].quantity == "3"
    assert [g.name for g in recipe.instruction_groups] == [None, "Topping"]
    print("[OK] Groups with empty names are ungrouped")

    flat = recipe_from_generated({
        "recipe_name": "Toast",
        "description": "",
        "ingredients": [{"name": "bröd", "measurement": "skivor", "quantity": "2"}],
        "instructions": ["Rosta brödet."],
    })
    assert [line.name for line in flat.ingredients] == ["bröd"]
    assert [step.text for step in flat.steps] == ["Rosta brödet."]
    print("[OK] Flat ingredient and instruction lists accepted")


def test_recipe_from_generated_rejects_invalid():
    """Test structural violations raise GenerationError"""
    missing_name = create_generated_recipe()
    del missing_name["recipe_name"]
    with pytest.raises(GenerationError, match="recipe_name"):
        recipe_from_generated(missing_name)

    no_steps = create_generated_recipe()
    no_steps["instruction_groups"] = [{"group_name": "", "instructions": []}]
    with pytest.raises(GenerationError):
        recipe_from_generated(no_steps)

    with pytest.raises(GenerationError):
        recipe_from_generated(["not", "an", "object"])
    print("[OK] Invalid recipes rejected")


def test_generate_meal_plan():
    """Test plan entries are validated against the request"""
    print("Testing meal plan generation...")

    provider = FakeProvider({
        "summary": "En grön vecka",
        "entries": [
            {"day_of_week": 1, "meal_type": "middag", "recipe_id": "5", "reason": "Snabbt"},
            {"day_of_week": 2, "meal_type": "middag", "recipe_id": None,
             "suggested_name": "Linsgryta", "suggested_recipe": create_generated_recipe(),
             "reason": "Vegetariskt"},
            {"day_of_week": 6, "meal_type": "middag", "recipe_id": "8", "reason": "Extra"},
        ],
    })
    service = AIService(Config(), provider=provider)
    preferences = MealPlanPreferences(meal_types=["middag"], days=[1, 2], max_suggestions=1)
    result = service.generate_meal_plan(CATALOG, preferences, pantry_items=["linser"])

    assert provider.prompts[0][1] == "meal_plan"
    assert result.summary == "En grön vecka"
    assert (result.quota.total, result.quota.new) == (2, 1)
    assert [e.day_of_week for e in result.entries] == [1, 2]
    assert not result.entries[0].is_new_suggestion
    assert result.entries[1].is_new_suggestion
    assert result.entries[1].suggested_recipe.name == "Linsgryta"
    assert len(result.warnings) == 1, "Only the out-of-plan entry is reported"
    print("[OK] Plan validated")


def test_meal_plan_quota_mismatch_is_a_warning():
    provider = FakeProvider({
        "summary": "",
        "entries": [
            {"day_of_week": 1, "meal_type": "middag", "recipe_id": "99", "reason": ""},
            {"day_of_week": 2, "meal_type": "middag", "recipe_id": "5", "reason": ""},
        ],
    })
    service = AIService(Config(), provider=provider)
    preferences = MealPlanPreferences(meal_types=["middag"], days=[1, 2], max_suggestions=1)
    result = service.generate_meal_plan(CATALOG, preferences)

    assert [e.recipe_id for e in result.entries] == ["5"]
    assert any("99" in w for w in result.warnings)
    assert any("förväntade 2" in w for w in result.warnings)
    assert any("förväntade 1" in w for w in result.warnings)
    print("[OK] Mismatches reported as warnings")


def test_parse_recipe_text():
    provider = FakeProvider(create_generated_recipe("Tomatsoppa"))
    service = AIService(Config(), provider=provider)
    recipe = service.parse_recipe_text("Tomatsoppa\n\n1 burk tomater\nKoka.")

    assert recipe.name == "Tomatsoppa"
    prompt, schema_name = provider.prompts[0]
    assert schema_name == "recipe"
    assert "1 burk tomater" in prompt
    print("[OK] Free text parsed through the provider")


def test_ai_disabled():
    service = AIService(Config(ai_enabled=False), provider=FakeProvider({}))
    assert not service.is_ai_available()
    with pytest.raises(GenerationError):
        service.parse_recipe_text("Något")
    with pytest.raises(GenerationError):
        service.generate_meal_plan(CATALOG, MealPlanPreferences())
    print("[OK] Disabled AI refuses work")


def test_lm_studio_provider():
    """Test the chat completions call and JSON extraction"""
    print("Testing LM Studio provider...")

    provider = LMStudioProvider(Config(lm_studio_url="http://localhost:1234/v1/"))
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {
        "choices": [{"message": {"content": 'Här är receptet: {"recipe_name": "Gröt"} Smaklig måltid!'}}]
    }

    with patch("services.ai_service.requests.post", return_value=response) as post:
        data = provider.generate("prompt", {"type": "object"}, "recipe")

    assert data == {"recipe_name": "Gröt"}
    url = post.call_args[0][0]
    payload = post.call_args[1]["json"]
    assert url == "http://localhost:1234/v1/chat/completions"
    assert payload["response_format"]["type"] == "json_schema"
    assert payload["response_format"]["json_schema"]["name"] == "recipe"
    print("[OK] Response JSON extracted")

    response.status_code = 500
    with patch("services.ai_service.requests.post", return_value=response):
        with pytest.raises(GenerationError):
            provider.generate("prompt", {}, "recipe")

    with patch("services.ai_service.requests.post",
               side_effect=requests.exceptions.ConnectionError("refused")):
        with pytest.raises(GenerationError):
            provider.generate("prompt", {}, "recipe")

    response.status_code = 200
    response.json.return_value = {"choices": [{"message": {"content": "inget json här"}}]}
    with patch("services.ai_service.requests.post", return_value=response):
        with pytest.raises(GenerationError):
            provider.generate("prompt", {}, "recipe")
    print("[OK] Provider failures raise GenerationError")


if __name__ == "__main__":
    print("Running AI service tests...\n")
    test_compute_slot_quota()
    test_meal_plan_prompt()
    test_recipe_from_generated()
    test_recipe_from_generated_rejects_invalid()
    test_generate_meal_plan()
    test_meal_plan_quota_mismatch_is_a_warning()
    test_parse_recipe_text()
    test_ai_disabled()
    test_lm_studio_provider()
    print("\nAll tests passed!")
