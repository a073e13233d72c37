"""
AI integration service for the Kokbok recipe pipeline.

Builds generation requests (weekly meal plans, free-text recipe parsing) and
validates responses into the canonical recipe shape, so a synthesized recipe
goes through the same save path as an imported one. The default provider is
a local LM Studio server speaking the OpenAI-compatible chat API.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from models import (
    CanonicalRecipe, CompactRecipe, IngredientGroup, IngredientLine, InstructionGroup,
    InstructionStep, MealPlanEntry, MealPlanPreferences, MealPlanResult, SlotQuota
)
from services.errors import GenerationError
from services.parsing_service import YIELD_MATCHERS, clean_text, coerce
from utils import Config, get_logger

logger = get_logger(__name__)

DAY_NAMES_SV = ["måndag", "tisdag", "onsdag", "torsdag", "fredag", "lördag", "söndag"]

DEFAULT_CATEGORIES = [
    "Huvudrätt", "Förrätt", "Efterrätt", "Vegetariskt", "Veganskt", "Bakning",
    "Soppa", "Sallad", "Fisk & skaldjur", "Kyckling", "Kött", "Pasta", "Grytor",
    "Snabbt & enkelt", "Helg",
]

_INGREDIENT_GROUPS_SCHEMA = {
    "type": "array",
    "description": "Ingrediensgrupper i ordning. Tom sträng som gruppnamn betyder ogrupperat.",
    "items": {
        "type": "object",
        "required": ["group_name", "ingredients"],
        "properties": {
            "group_name": {"type": "string"},
            "ingredients": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["name", "measurement", "quantity"],
                    "properties": {
                        "name": {"type": "string"},
                        "measurement": {"type": "string"},
                        "quantity": {"type": "string"},
                    },
                },
            },
        },
    },
}

_INSTRUCTION_GROUPS_SCHEMA = {
    "type": "array",
    "description": "Instruktionsgrupper i ordning. Tom sträng som gruppnamn betyder ogrupperat.",
    "items": {
        "type": "object",
        "required": ["group_name", "instructions"],
        "properties": {
            "group_name": {"type": "string"},
            "instructions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["step"],
                    "properties": {"step": {"type": "string"}},
                },
            },
        },
    },
}

RECIPE_SCHEMA = {
    "type": "object",
    "required": ["recipe_name", "description", "ingredient_groups", "instruction_groups"],
    "properties": {
        "recipe_name": {"type": "string"},
        "description": {"type": "string"},
        "author": {"type": ["string", "null"]},
        "recipe_yield": {"type": ["string", "null"]},
        "recipe_yield_name": {"type": ["string", "null"]},
        "prep_time": {"type": ["number", "null"]},
        "cook_time": {"type": ["number", "null"]},
        "cuisine": {"type": ["string", "null"]},
        "categories": {"type": "array", "items": {"type": "string"}},
        "ingredient_groups": _INGREDIENT_GROUPS_SCHEMA,
        "instruction_groups": _INSTRUCTION_GROUPS_SCHEMA,
    },
}

MEAL_PLAN_SCHEMA = {
    "type": "object",
    "required": ["entries", "summary"],
    "properties": {
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["day_of_week", "meal_type", "recipe_id", "reason"],
                "properties": {
                    "day_of_week": {"type": "integer", "minimum": 1, "maximum": 7},
                    "meal_type": {"type": "string"},
                    "recipe_id": {"type": ["string", "null"]},
                    "suggested_name": {"type": ["string", "null"]},
                    "suggested_description": {"type": ["string", "null"]},
                    "suggested_recipe": {"anyOf": [RECIPE_SCHEMA, {"type": "null"}]},
                    "reason": {"type": "string"},
                },
            },
        },
        "summary": {"type": "string"},
    },
}


def compute_slot_quota(days: List[int], meal_types: List[str], requested_new: int) -> SlotQuota:
    """Exact new/existing split of day x meal-type slots"""
    total = len(days) * len(meal_types)
    new = max(0, min(int(requested_new), total))
    return SlotQuota(total=total, new=new, existing=total - new)


def format_catalog_line(recipe: CompactRecipe) -> str:
    """``[id] name (categories 45min 4p)``"""
    meta = []
    if recipe.categories:
        meta.append(", ".join(recipe.categories))
    if recipe.total_time > 0:
        meta.append(f"{recipe.total_time}min")
    if recipe.recipe_yield:
        meta.append(f"{recipe.recipe_yield}p")
    suffix = f" ({' '.join(meta)})" if meta else ""
    return f"[{recipe.id}] {recipe.name}{suffix}"


def build_meal_plan_prompt(catalog: List[CompactRecipe], preferences: MealPlanPreferences,
                           pantry_items: Optional[List[str]], quota: SlotQuota) -> str:
    """Weekly meal-plan prompt embedding the catalog, preferences and exact quota"""
    day_names = [DAY_NAMES_SV[day - 1] for day in preferences.days]
    all_days = len(preferences.days) == 7
    day_scope = "måndag–söndag" if all_days else ", ".join(day_names)

    if quota.new == 0:
        source_rule = ("- Välj ENBART recept från listan nedan (ange recipe_id för varje entry). "
                       "Inga nya förslag: suggested_name, suggested_description och suggested_recipe ska vara null.")
    elif quota.existing == 0:
        source_rule = (f"- ALLA {quota.total} entries ska vara nya receptförslag (recipe_id = null). "
                       "Använd INGA befintliga recept från listan.")
    else:
        source_rule = (f"- Skapa exakt {quota.total} entries totalt: exakt {quota.new} ska vara nya "
                       f"receptförslag (recipe_id = null) och exakt {quota.existing} ska vara befintliga "
                       "recept från listan (med recipe_id).")

    rules = [source_rule]
    if quota.new > 0:
        rules.append('- Varje nytt förslag ska ha "suggested_recipe" med ingredient_groups, '
                     "instruction_groups, prep_time, cook_time, recipe_yield och categories.")
    if not all_days:
        rules.append(f"- Skapa BARA entries för dessa dagar: {', '.join(day_names)}.")

    categories = preferences.weighted_categories()
    if categories:
        weights = ", ".join(f"{name} ({preferences.category_weights[name]:g})" for name in categories)
        rules.append(f"- Kategoripreferenser med vikt: {weights}. Prioritera tyngre kategorier.")
    else:
        rules.append("- Inga särskilda kategoripreferenser.")

    rules.append(f"- Måltidstyper att planera: {', '.join(preferences.meal_types)}.")
    rules.append(f"- Antal portioner per måltid: {preferences.servings}.")
    rules.append("- Variera kökstyp och ingredienser under veckan.")
    if pantry_items:
        rules.append(f"- Skafferiet innehåller: {', '.join(pantry_items)}. "
                     "Prioritera recept som använder dessa ingredienser.")

    recipe_list = "\n".join(format_catalog_line(recipe) for recipe in catalog) or "(inga recept)"
    meal_types = ", ".join(f'"{t}"' for t in preferences.meal_types)

    return f"""Du är en erfaren kock som planerar veckans måltider ({day_scope}) utifrån användarens receptsamling.

REGLER:
{chr(10).join(rules)}

ANVÄNDARENS RECEPT:
{recipe_list}

Svara med JSON. Varje entry har day_of_week (1=måndag..7=söndag), meal_type (en av {meal_types}),
recipe_id, suggested_name, suggested_description, suggested_recipe och reason (en mening).
Inkludera också "summary" med 1-2 meningar om veckans tema."""


def build_recipe_parsing_prompt(text: str, categories: Optional[List[str]] = None) -> str:
    """Prompt for turning free recipe text (e.g. captured page text) into RECIPE_SCHEMA JSON"""
    category_list = "\n".join(f"- {c}" for c in (categories or DEFAULT_CATEGORIES))
    return f"""Du strukturerar recept till JSON. Svara ENDAST med JSON enligt schemat, utan markdown.

RIKTLINJER:
- Gruppera ingredienser och instruktioner som i receptet (t.ex. "Deg", "Fyllning", "Sås").
  Använd tom sträng som group_name om receptet saknar grupper.
- Ingredienser: name, measurement (dl, msk, tsk, krm, g, kg, ml, l, st, klyfta, burk, förp) och quantity som text.
- Tider i minuter. Numrera inte stegen.
- Om texten innehåller [Receptbild: url] ska du ignorera den raden.

KATEGORIER (välj relevanta):
{category_list}

RECEPTTEXT:
{text}"""


def _as_minutes(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)) and value >= 0:
        return int(round(value))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _groups(data: Dict[str, Any], groups_key: str, flat_key: str, items_key: str) -> List[Dict[str, Any]]:
    groups = data.get(groups_key)
    if groups is None and isinstance(data.get(flat_key), list):
        groups = [{"group_name": "", items_key: data[flat_key]}]
    if not isinstance(groups, list):
        raise GenerationError(f"Obligatoriskt fält saknas: {groups_key}")
    return groups


def recipe_from_generated(data: Any) -> CanonicalRecipe:
    """
    Validate a generated recipe and convert it to a CanonicalRecipe.

    Raises:
        GenerationError: required fields are missing or structurally wrong
    """
    if not isinstance(data, dict):
        raise GenerationError("Ogiltigt svar: förväntade ett JSON-objekt")

    name = data.get("recipe_name")
    if not isinstance(name, str) or not name.strip():
        raise GenerationError("Obligatoriskt fält saknas: recipe_name")

    ingredient_groups = []
    for group in _groups(data, "ingredient_groups", "ingredients", "ingredients"):
        if not isinstance(group, dict) or not isinstance(group.get("ingredients", []), list):
            raise GenerationError("Ogiltig ingrediensgrupp")
        lines = []
        for item in group.get("ingredients", []):
            if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"].strip():
                raise GenerationError("Ingrediens saknar namn")
            lines.append(IngredientLine(
                name=item["name"].strip(),
                quantity=str(item.get("quantity") or "").strip(),
                measurement=str(item.get("measurement") or "").strip()
            ))
        ingredient_groups.append(IngredientGroup(group.get("group_name"), lines))

    instruction_groups = []
    for group in _groups(data, "instruction_groups", "instructions", "instructions"):
        if not isinstance(group, dict) or not isinstance(group.get("instructions", []), list):
            raise GenerationError("Ogiltig instruktionsgrupp")
        steps = []
        for item in group.get("instructions", []):
            text = item.get("step") if isinstance(item, dict) else item
            if not isinstance(text, str) or not text.strip():
                raise GenerationError("Instruktionssteg saknar text")
            steps.append(InstructionStep(text=text.strip()))
        instruction_groups.append(InstructionGroup(group.get("group_name"), steps))

    recipe_yield, yield_name = None, data.get("recipe_yield_name") or None
    if data.get("recipe_yield") is not None:
        coerced, _ = coerce(data["recipe_yield"], YIELD_MATCHERS)
        if coerced:
            recipe_yield = coerced[0]
            yield_name = yield_name or coerced[1]

    categories = data.get("categories") or []
    recipe = CanonicalRecipe(
        name=name.strip(),
        description=clean_text(data.get("description")),
        author=data.get("author") or None,
        cuisine=data.get("cuisine") or None,
        recipe_yield=recipe_yield,
        recipe_yield_name=yield_name,
        prep_time=_as_minutes(data.get("prep_time")),
        cook_time=_as_minutes(data.get("cook_time")),
        categories=[c for c in categories if isinstance(c, str) and c.strip()],
        ingredient_groups=ingredient_groups,
        instruction_groups=instruction_groups
    )

    if not recipe.ingredients:
        raise GenerationError("Obligatoriskt fält saknas: ingredienser (måste vara en icke-tom lista)")
    if not recipe.steps:
        raise GenerationError("Obligatoriskt fält saknas: instruktioner (måste vara en icke-tom lista)")
    return recipe


def extract_json_object(response: str) -> Dict[str, Any]:
    """Parse the outermost JSON object in a model response"""
    start = response.find('{')
    end = response.rfind('}') + 1
    if start < 0 or end <= start:
        raise GenerationError("Svaret innehöll ingen JSON")
    try:
        return json.loads(response[start:end])
    except json.JSONDecodeError as e:
        raise GenerationError(f"Svaret var inte giltig JSON: {e}") from e


class GenerationProvider:
    """Contract for structured text generation"""

    def generate(self, prompt: str, schema: Dict[str, Any], schema_name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True


class LMStudioProvider(GenerationProvider):
    """OpenAI-compatible chat completions against a local LM Studio server"""

    def __init__(self, config: Config):
        self.base_url = config.lm_studio_url.rstrip('/')
        self.model = config.ai_model
        self.timeout = config.ai_timeout_seconds
        self.temperature = config.ai_temperature

    def is_available(self) -> bool:
        """Check if LM Studio is running and responsive"""
        try:
            response = requests.get(f"{self.base_url}/models", timeout=5,
                                    headers={'Content-Type': 'application/json'})
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.debug(f"LM Studio health check failed: {e}")
            return False

    def generate(self, prompt: str, schema: Dict[str, Any], schema_name: str) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "Du är en noggrann matlagningsassistent som svarar med JSON."},
                {"role": "user", "content": prompt}
            ],
            "temperature": self.temperature,
            "stream": False,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema}
            }
        }

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                timeout=self.timeout,
                headers={'Content-Type': 'application/json'}
            )
        except requests.exceptions.RequestException as e:
            raise GenerationError(f"LM Studio API call failed: {e}") from e

        if response.status_code != 200:
            raise GenerationError(f"LM Studio API returned status {response.status_code}")

        content = response.json().get('choices', [{}])[0].get('message', {}).get('content', '')
        return extract_json_object(content or "")


class AIService:
    """
    Synthesizer: meal plans and free-text recipe parsing through a
    GenerationProvider, validated into the canonical shape.
    """

    def __init__(self, config: Config, provider: Optional[GenerationProvider] = None):
        self.config = config
        self.provider = provider or LMStudioProvider(config)
        self._ai_available = None
        self._last_health_check = None
        self._health_check_interval = 300  # seconds

    def is_ai_available(self, force_check: bool = False) -> bool:
        if not self.config.ai_enabled:
            return False

        now = datetime.now()
        if (not force_check and self._ai_available is not None and self._last_health_check
                and (now - self._last_health_check).total_seconds() < self._health_check_interval):
            return self._ai_available

        self._ai_available = self.provider.is_available()
        self._last_health_check = now
        if not self._ai_available:
            logger.warning("AI provider unavailable")
        return self._ai_available

    def parse_recipe_text(self, text: str, categories: Optional[List[str]] = None) -> CanonicalRecipe:
        """
        Structure free recipe text with the generation provider.

        Raises:
            GenerationError: AI disabled, provider failure or invalid response
        """
        if not self.config.ai_enabled:
            raise GenerationError("AI är inte aktiverat")
        if not text or not text.strip():
            raise GenerationError("Ingen text att tolka")

        prompt = build_recipe_parsing_prompt(text, categories)
        data = self.provider.generate(prompt, RECIPE_SCHEMA, "recipe")
        recipe = recipe_from_generated(data)
        logger.info(f"Parsed recipe '{recipe.name}' from {len(text)} characters of text")
        return recipe

    def generate_meal_plan(self, catalog: List[CompactRecipe], preferences: MealPlanPreferences,
                           pantry_items: Optional[List[str]] = None) -> MealPlanResult:
        """
        Generate a weekly plan. Entries that break the request's rules are
        dropped or reported as warnings rather than failing the whole plan.

        Raises:
            GenerationError: AI disabled or provider failure
        """
        if not self.config.ai_enabled:
            raise GenerationError("AI är inte aktiverat")

        quota = compute_slot_quota(preferences.days, preferences.meal_types, preferences.max_suggestions)
        prompt = build_meal_plan_prompt(catalog, preferences, pantry_items, quota)
        data = self.provider.generate(prompt, MEAL_PLAN_SCHEMA, "meal_plan")

        result = MealPlanResult(summary=str(data.get("summary") or ""), quota=quota)
        known_ids = {str(recipe.id) for recipe in catalog}

        for raw in data.get("entries") or []:
            entry = self._parse_entry(raw, preferences, known_ids, result.warnings)
            if entry:
                result.entries.append(entry)

        new_count = sum(1 for e in result.entries if e.is_new_suggestion)
        if len(result.entries) != quota.total:
            result.warnings.append(f"Planen har {len(result.entries)} måltider, förväntade {quota.total}")
        if new_count != quota.new:
            result.warnings.append(f"Planen har {new_count} nya förslag, förväntade {quota.new}")

        logger.info(f"Generated meal plan with {len(result.entries)} entries ({new_count} new)")
        return result

    def _parse_entry(self, raw: Any, preferences: MealPlanPreferences, known_ids,
                     warnings: List[str]) -> Optional[MealPlanEntry]:
        if not isinstance(raw, dict):
            warnings.append("Ignorerade ogiltig måltid i svaret")
            return None

        day = raw.get("day_of_week")
        meal_type = raw.get("meal_type")
        if day not in preferences.days or meal_type not in preferences.meal_types:
            warnings.append(f"Ignorerade måltid utanför planen: dag {day}, {meal_type}")
            return None

        recipe_id = raw.get("recipe_id")
        if recipe_id is not None and str(recipe_id) not in known_ids:
            warnings.append(f"Okänt recept-id {recipe_id} ignorerades")
            return None

        suggested_recipe = None
        if recipe_id is None and raw.get("suggested_recipe"):
            try:
                suggested_recipe = recipe_from_generated(raw["suggested_recipe"])
            except GenerationError as e:
                warnings.append(f"Förslaget för dag {day} kunde inte tolkas: {e}")

        return MealPlanEntry(
            day_of_week=day,
            meal_type=meal_type,
            recipe_id=str(recipe_id) if recipe_id is not None else None,
            suggested_name=raw.get("suggested_name"),
            suggested_description=raw.get("suggested_description"),
            suggested_recipe=suggested_recipe,
            reason=str(raw.get("reason") or "")
        )


def get_ai_service(config: Config, provider: Optional[GenerationProvider] = None) -> AIService:
    """Factory function to get AI service instance"""
    return AIService(config, provider)
