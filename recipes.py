"""Recipe catalog: items, buildings, transport and the recipe lookups the production solver uses."""

import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass

from frozendict import frozendict

_LOGGER = logging.getLogger("chainplanner")

# All times in the catalog are seconds per cycle, all rates are "per minute"
SECONDS_PER_MINUTE = 60

DEFAULT_CATALOG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "catalog.json")


class CatalogError(ValueError):
    """catalog data is malformed or references an entry that does not exist"""


@dataclass(frozen=True)
class Item:
    """an item that can be produced, consumed or transported"""

    item_id: str
    name: str
    item_type: str = ""
    transport_type: str | None = None


@dataclass(frozen=True)
class Building:
    """a machine that runs recipes"""

    building_id: str
    name: str
    power: float = 0.0


@dataclass(frozen=True)
class TransportType:
    """a conveyor (or pipe) and how many items per minute it carries"""

    transport_id: str
    name: str
    speed: float


@dataclass(frozen=True)
class Recipe:
    """a recipe run by one building, optionally in one of the building's modes"""

    recipe_id: str
    building_id: str
    time: float
    ingredients: frozendict
    products: frozendict
    mode_id: str | None = None

    @property
    def time_minutes(self) -> float:
        """Cycle time of the recipe in minutes."""
        return self.time / SECONDS_PER_MINUTE

    def product_amount(self, item_id: str) -> float:
        """Get the amount of an item produced per cycle.

        Precondition:
            item_id is a non-empty string

        Postcondition:
            returns the amount listed for item_id when it is a product
            otherwise returns the amount of the first product (multi-output recipes
            looked up through one of their co-products)
            returns 0.0 for recipes without products

        Args:
            item_id: product to look up

        Returns:
            items per cycle
        """
        if item_id in self.products:
            return self.products[item_id]
        for amount in self.products.values():
            return amount
        return 0.0

    def ingredient_amount(self, item_id: str) -> float:
        """Get the amount of an item consumed per cycle (0.0 if it is not an ingredient)."""
        return self.ingredients.get(item_id, 0.0)


def _index_by_item(recipes: list[Recipe], attribute: str) -> dict[str, list[Recipe]]:
    """Index recipes by every item id listed in one of their item maps.

    Precondition:
        recipes is a list of Recipe objects
        attribute is "ingredients" or "products"

    Postcondition:
        returns dict mapping item id to the recipes listing it, in catalog order

    Args:
        recipes: all catalog recipes
        attribute: which item map to index

    Returns:
        dict of item id to list of recipes
    """
    index = defaultdict(list)
    for recipe in recipes:
        for item_id in getattr(recipe, attribute):
            index[item_id].append(recipe)
    return dict(index)


class RecipeCatalog:
    """Read-only catalog of items, buildings, recipes and transport types."""

    def __init__(
        self,
        items: dict[str, Item],
        buildings: dict[str, Building],
        recipes: list[Recipe],
        transport: dict[str, TransportType] | None = None,
        waste_items: set[str] | None = None,
    ):
        """Initialize the catalog and its lookup indexes.

        Precondition:
            every item and building referenced by recipes exists in items/buildings

        Postcondition:
            recipes are indexed by product and by ingredient
            all collections are frozen

        Args:
            items: item id to Item
            buildings: building id to Building
            recipes: every recipe of every building and mode, in catalog order
            transport: transport id to TransportType
            waste_items: ids of items classified as waste
        """
        self._items = frozendict(items)
        self._buildings = frozendict(buildings)
        self._recipes = tuple(recipes)
        self._transport = frozendict(transport or {})
        self._waste_items = frozenset(waste_items or ())
        self._by_product = frozendict(
            {k: tuple(v) for k, v in _index_by_item(recipes, "products").items()}
        )
        self._by_ingredient = frozendict(
            {k: tuple(v) for k, v in _index_by_item(recipes, "ingredients").items()}
        )

    @property
    def recipes(self) -> tuple[Recipe, ...]:
        """All recipes in catalog order."""
        return self._recipes

    @property
    def waste_items(self) -> frozenset[str]:
        """Ids of the items the catalog classifies as waste."""
        return self._waste_items

    def item_ids(self) -> list[str]:
        """All item ids in catalog order."""
        return list(self._items.keys())

    def has_item(self, item_id: str) -> bool:
        return item_id in self._items

    def get_item(self, item_id: str) -> Item:
        """Get an item by id.

        Raises:
            CatalogError: if the item is not in the catalog
        """
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise CatalogError(f"Unknown item '{item_id}'") from exc

    def get_building(self, building_id: str) -> Building:
        """Get a building by id.

        Raises:
            CatalogError: if the building is not in the catalog
        """
        try:
            return self._buildings[building_id]
        except KeyError as exc:
            raise CatalogError(f"Unknown building '{building_id}'") from exc

    def get_transport_speed(self, transport_type: str) -> float | None:
        """Get the items/minute one transport line carries, or None if the type is unknown."""
        transport = self._transport.get(transport_type)
        return transport.speed if transport else None

    def find_recipes_for_item(self, item_id: str) -> list[Recipe] | None:
        """Find every recipe that produces an item.

        Precondition:
            item_id is a non-empty string

        Postcondition:
            returns a new list of recipes listing item_id as a product (primary product
            or byproduct), in catalog order
            returns None when no recipe produces the item

        Args:
            item_id: item to produce

        Returns:
            list of recipes, or None
        """
        recipes = self._by_product.get(item_id)
        if not recipes:
            _LOGGER.debug("No recipes found for item '%s'", item_id)
            return None
        return list(recipes)

    def find_disposal_recipes_for_item(self, item_id: str) -> list[Recipe] | None:
        """Find every recipe that consumes an item as an ingredient.

        Precondition:
            item_id is a non-empty string

        Postcondition:
            returns a new list of recipes listing item_id as an ingredient, in catalog order
            returns None when nothing consumes the item

        Args:
            item_id: item to dispose of

        Returns:
            list of recipes, or None
        """
        recipes = self._by_ingredient.get(item_id)
        if not recipes:
            _LOGGER.debug("No disposal recipes found for item '%s'", item_id)
            return None
        return list(recipes)

    def items_with_alternative_recipes(self) -> list[str]:
        """Get ids of non-waste items that more than one recipe produces.

        These are the items a default recipe preference is meaningful for.
        """
        return [
            item_id
            for item_id in self._items
            if item_id not in self._waste_items and len(self._by_product.get(item_id, ())) > 1
        ]


def _require(data: dict, key: str, context: str):
    """Get a required key from raw catalog data.

    Raises:
        CatalogError: if the key is missing
    """
    if not isinstance(data, dict) or key not in data:
        raise CatalogError(f"Missing '{key}' in {context}")
    return data[key]


def _parse_amounts(entries: list, context: str) -> frozendict:
    """Convert a list of {item_id, amount} entries into a frozen item->amount map.

    Precondition:
        entries is a list of dicts with "item_id" and "amount" keys

    Postcondition:
        returns frozendict in listing order
        repeated item ids are summed

    Args:
        entries: raw ingredient or product list
        context: description used in error messages

    Returns:
        frozendict of item id to amount per cycle

    Raises:
        CatalogError: if an entry is malformed
    """
    amounts: dict[str, float] = {}
    for entry in entries or []:
        item_id = _require(entry, "item_id", context)
        try:
            amount = float(_require(entry, "amount", context))
        except (TypeError, ValueError) as exc:
            raise CatalogError(f"Invalid amount for '{item_id}' in {context}") from exc
        amounts[item_id] = amounts.get(item_id, 0.0) + amount
    return frozendict(amounts)


def _parse_recipe(raw: dict, building_id: str, mode_id: str | None, position: int) -> Recipe:
    """Create a Recipe from raw catalog data.

    Precondition:
        raw is a recipe dict with "time", "ingredients" and "products"

    Postcondition:
        returns a Recipe
        a recipe without an id gets "<building>_recipe_<position>" and a warning is logged

    Args:
        raw: raw recipe dict
        building_id: owning building
        mode_id: owning building mode or None
        position: position of the recipe within its building

    Returns:
        Recipe object

    Raises:
        CatalogError: if required fields are missing or malformed
    """
    context = f"recipe {position} of building '{building_id}'"
    recipe_id = raw.get("id") if isinstance(raw, dict) else None
    if recipe_id is None:
        recipe_id = f"{building_id}_recipe_{position}"
        _LOGGER.warning("Recipe in building '%s' has no id, using '%s'", building_id, recipe_id)
    try:
        time = float(_require(raw, "time", context))
    except (TypeError, ValueError) as exc:
        raise CatalogError(f"Invalid time in {context}") from exc
    return Recipe(
        recipe_id=str(recipe_id),
        building_id=building_id,
        time=time,
        ingredients=_parse_amounts(raw.get("ingredients"), context),
        products=_parse_amounts(_require(raw, "products", context), context),
        mode_id=mode_id,
    )


def _parse_building_recipes(building_id: str, raw_building: dict) -> list[Recipe]:
    """Collect the recipes of a building, its own list first and then each mode's list."""
    recipes = []
    for raw in raw_building.get("recipes") or []:
        recipes.append(_parse_recipe(raw, building_id, None, len(recipes)))
    for mode_id, mode in (raw_building.get("modes") or {}).items():
        for raw in (mode or {}).get("recipes") or []:
            recipes.append(_parse_recipe(raw, building_id, mode_id, len(recipes)))
    return recipes


def _validate_references(items: dict[str, Item], transport: dict[str, TransportType], recipes: list[Recipe]) -> None:
    """Check that recipe ids are unique and every item a recipe or item references exists.

    Raises:
        CatalogError: on the first duplicate id or dangling reference
    """
    seen_ids = set()
    for recipe in recipes:
        if recipe.recipe_id in seen_ids:
            raise CatalogError(f"Duplicate recipe id '{recipe.recipe_id}' in building '{recipe.building_id}'")
        seen_ids.add(recipe.recipe_id)
        for item_id in list(recipe.ingredients) + list(recipe.products):
            if item_id not in items:
                raise CatalogError(f"Recipe '{recipe.recipe_id}' references unknown item '{item_id}'")
    for item in items.values():
        if item.transport_type is not None and item.transport_type not in transport:
            raise CatalogError(
                f"Item '{item.item_id}' references unknown transport type '{item.transport_type}'"
            )


def catalog_from_dict(data: dict) -> RecipeCatalog:
    """Build and validate a catalog from its JSON representation.

    Precondition:
        data has an "items" dict and a "buildings" dict
        "transport" and "waste" are optional

    Postcondition:
        returns RecipeCatalog whose recipes only reference known items and buildings

    Args:
        data: raw catalog dict (see catalog.json)

    Returns:
        validated RecipeCatalog

    Raises:
        CatalogError: if the data is malformed or has dangling references
    """
    items = {}
    for item_id, raw in _require(data, "items", "catalog").items():
        items[item_id] = Item(
            item_id=item_id,
            name=_require(raw, "name", f"item '{item_id}'"),
            item_type=raw.get("type", ""),
            transport_type=raw.get("transport_type"),
        )

    transport = {}
    for transport_id, raw in (data.get("transport") or {}).items():
        try:
            speed = float(_require(raw, "speed", f"transport '{transport_id}'"))
        except (TypeError, ValueError) as exc:
            raise CatalogError(f"Invalid speed for transport '{transport_id}'") from exc
        if speed <= 0:
            raise CatalogError(f"Transport '{transport_id}' must have a positive speed")
        transport[transport_id] = TransportType(transport_id, raw.get("name", transport_id), speed)

    buildings = {}
    recipes = []
    for building_id, raw in _require(data, "buildings", "catalog").items():
        buildings[building_id] = Building(
            building_id=building_id,
            name=_require(raw, "name", f"building '{building_id}'"),
            power=float(raw.get("power", 0.0)),
        )
        recipes.extend(_parse_building_recipes(building_id, raw))

    _validate_references(items, transport, recipes)

    waste_items = set(data.get("waste") or [])
    unknown_waste = waste_items - items.keys()
    if unknown_waste:
        raise CatalogError(f"Unknown waste items: {', '.join(sorted(unknown_waste))}")

    _LOGGER.debug("Catalog loaded: %s items, %s buildings, %s recipes", len(items), len(buildings), len(recipes))
    return RecipeCatalog(items, buildings, recipes, transport, waste_items)


def load_catalog(path: str = DEFAULT_CATALOG_PATH) -> RecipeCatalog:
    """Load and validate a catalog JSON file.

    Raises:
        CatalogError: if the file is not valid JSON or the catalog is malformed
        OSError: if the file cannot be read
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Catalog '{path}' is not valid JSON: {exc}") from exc
    return catalog_from_dict(data)
