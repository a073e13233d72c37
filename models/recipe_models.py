"""
Recipe-related data models for the Kokbok recipe pipeline.

The canonical recipe is the single shape every source (scraped page, AI text,
manual entry) is normalized into. Groups keep authoring order and ungrouped
items always precede the first named group.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any, Iterable


def _clean_group_name(name: Optional[str]) -> Optional[str]:
    """Empty or whitespace-only group names mean 'ungrouped'"""
    if name is None:
        return None
    name = str(name).strip()
    return name or None


@dataclass
class IngredientLine:
    """A single ingredient as written by the author"""
    name: str
    quantity: str = ""
    measurement: str = ""
    form: Optional[str] = None
    id: Optional[int] = None

    def get_display_text(self) -> str:
        parts = [p for p in (self.quantity, self.measurement, self.name) if p]
        text = " ".join(parts)
        if self.form:
            text = f"{text}, {self.form}"
        return text


@dataclass
class ResolvedIngredientLine(IngredientLine):
    """Ingredient line with optional taxonomy references from entity resolution"""
    food_id: Optional[int] = None
    unit_id: Optional[int] = None

    @classmethod
    def from_line(cls, line: IngredientLine, name: Optional[str] = None,
                  measurement: Optional[str] = None, food_id: Optional[int] = None,
                  unit_id: Optional[int] = None) -> 'ResolvedIngredientLine':
        return cls(
            name=line.name if name is None else name,
            quantity=line.quantity,
            measurement=line.measurement if measurement is None else measurement,
            form=line.form,
            id=line.id,
            food_id=food_id,
            unit_id=unit_id
        )


@dataclass
class IngredientGroup:
    name: Optional[str] = None
    ingredients: List[IngredientLine] = field(default_factory=list)

    def __post_init__(self):
        self.name = _clean_group_name(self.name)


@dataclass
class InstructionStep:
    text: str
    id: Optional[int] = None


@dataclass
class InstructionGroup:
    name: Optional[str] = None
    steps: List[InstructionStep] = field(default_factory=list)

    def __post_init__(self):
        self.name = _clean_group_name(self.name)


def order_groups(groups: Iterable, items_attr: str) -> list:
    """
    Merge every ungrouped group into a single leading group.

    Named groups keep their authoring position; empty groups are dropped.
    """
    groups = list(groups)
    if not groups:
        return []

    group_type = type(groups[0])
    ungrouped_items = []
    named = []
    for group in groups:
        items = getattr(group, items_attr)
        if group.name is None:
            ungrouped_items.extend(items)
        elif items:
            named.append(group)

    ordered = []
    if ungrouped_items:
        ordered.append(group_type(None, ungrouped_items))
    ordered.extend(named)
    return ordered


@dataclass
class CanonicalRecipe:
    """
    Normalized recipe record produced by the Normalizer or the Synthesizer.

    Mutated only by full replacement; persisted through the flat save
    contract (see flatten_ingredients / flatten_instructions).
    """
    name: str
    description: str = ""
    author: Optional[str] = None
    cuisine: Optional[str] = None
    recipe_yield: Optional[int] = None
    recipe_yield_name: Optional[str] = None
    prep_time: Optional[int] = None  # minutes
    cook_time: Optional[int] = None  # minutes
    categories: List[str] = field(default_factory=list)
    ingredient_groups: List[IngredientGroup] = field(default_factory=list)
    instruction_groups: List[InstructionGroup] = field(default_factory=list)
    source_url: Optional[str] = None
    image_url: Optional[str] = None
    id: Optional[int] = None

    def __post_init__(self):
        self.ingredient_groups = order_groups(self.ingredient_groups, 'ingredients')
        self.instruction_groups = order_groups(self.instruction_groups, 'steps')

    @property
    def ingredients(self) -> List[IngredientLine]:
        """All ingredient lines in display order"""
        return [line for group in self.ingredient_groups for line in group.ingredients]

    @property
    def steps(self) -> List[InstructionStep]:
        """All instruction steps in display order"""
        return [step for group in self.instruction_groups for step in group.steps]

    def get_total_time(self) -> Optional[int]:
        if self.prep_time is None and self.cook_time is None:
            return None
        return (self.prep_time or 0) + (self.cook_time or 0)

    def flatten_ingredients(self) -> List[Dict[str, Any]]:
        """
        Serialize ingredient groups into the flat save format.

        Named groups become ``{"group": name}`` markers followed by their
        items; ungrouped items come first without a marker.
        """
        flat: List[Dict[str, Any]] = []
        for group in self.ingredient_groups:
            if group.name:
                flat.append({"group": group.name})
            for line in group.ingredients:
                item = {
                    "name": line.name,
                    "quantity": line.quantity,
                    "measurement": line.measurement,
                    "form": line.form,
                }
                if isinstance(line, ResolvedIngredientLine):
                    item["food_id"] = line.food_id
                    item["unit_id"] = line.unit_id
                flat.append(item)
        return flat

    def flatten_instructions(self) -> List[Dict[str, Any]]:
        flat: List[Dict[str, Any]] = []
        for group in self.instruction_groups:
            if group.name:
                flat.append({"group": group.name})
            for step in group.steps:
                flat.append({"step": step.text})
        return flat

    def get_fields(self) -> Dict[str, Any]:
        """Scalar recipe fields for persistence"""
        return {
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "cuisine": self.cuisine,
            "recipe_yield": self.recipe_yield,
            "recipe_yield_name": self.recipe_yield_name,
            "prep_time": self.prep_time,
            "cook_time": self.cook_time,
            "categories": list(self.categories),
            "source_url": self.source_url,
            "image_url": self.image_url,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_flat(cls, fields: Dict[str, Any], flat_ingredients: List[Dict[str, Any]],
                  flat_instructions: List[Dict[str, Any]]) -> 'CanonicalRecipe':
        """Rebuild a recipe from the flat save format"""
        ingredient_groups = [IngredientGroup(None, [])]
        for item in flat_ingredients or []:
            if "group" in item:
                ingredient_groups.append(IngredientGroup(item["group"], []))
                continue
            line_kwargs = dict(
                name=item.get("name") or "",
                quantity=item.get("quantity") or "",
                measurement=item.get("measurement") or "",
                form=item.get("form"),
                id=item.get("id"),
            )
            if item.get("food_id") is not None or item.get("unit_id") is not None:
                line = ResolvedIngredientLine(food_id=item.get("food_id"),
                                              unit_id=item.get("unit_id"), **line_kwargs)
            else:
                line = IngredientLine(**line_kwargs)
            ingredient_groups[-1].ingredients.append(line)

        instruction_groups = [InstructionGroup(None, [])]
        for item in flat_instructions or []:
            if "group" in item:
                instruction_groups.append(InstructionGroup(item["group"], []))
                continue
            instruction_groups[-1].steps.append(
                InstructionStep(text=item.get("step") or "", id=item.get("id"))
            )

        known = {name for name in cls.__dataclass_fields__
                 if name not in ("ingredient_groups", "instruction_groups")}
        scalar_fields = {key: value for key, value in fields.items() if key in known}
        if scalar_fields.get("categories") is None:
            scalar_fields["categories"] = []
        return cls(ingredient_groups=ingredient_groups,
                   instruction_groups=instruction_groups, **scalar_fields)


@dataclass
class IngredientReference:
    """An ingredient line referenced by an instruction step"""
    ingredient_id: int
    name: str
    quantity: str = ""
    measurement: str = ""
    group_name: Optional[str] = None


@dataclass
class StepAssociation:
    """Derived, never stored: the ingredients one step refers to"""
    step_index: int
    text: str
    group_name: Optional[str] = None
    ingredients: List[IngredientReference] = field(default_factory=list)
