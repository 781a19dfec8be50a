"""Waste byproduct accounting and disposal node synthesis."""

import json
import logging

from needs import Edge, NeedsEntry, disposal_node_id, max_level
from recipes import Recipe, RecipeCatalog

_LOGGER = logging.getLogger("chainplanner")

ORPHAN_DROP = "drop"
ORPHAN_STRICT = "strict"


class MissingDisposalRouteError(ValueError):
    """a waste byproduct has no producer in the chain or no disposal recipe"""


class WasteManager:
    """Classifies waste items, accumulates their rates during a calculation and routes
    them into disposal nodes afterwards."""

    def __init__(
        self,
        catalog: RecipeCatalog,
        waste_items: set[str] | None = None,
        orphan_policy: str = ORPHAN_DROP,
    ):
        """Initialize the manager.

        Precondition:
            orphan_policy is ORPHAN_DROP or ORPHAN_STRICT

        Postcondition:
            waste items default to the catalog's waste classification
            no waste is recorded

        Args:
            catalog: catalog used for disposal recipe lookup
            waste_items: ids of waste items, or None for the catalog's list
            orphan_policy: what to do with waste that cannot be routed

        Raises:
            ValueError: if orphan_policy is unknown
        """
        if orphan_policy not in (ORPHAN_DROP, ORPHAN_STRICT):
            raise ValueError(f"Unknown orphan policy '{orphan_policy}'")
        self.catalog = catalog
        self.waste_items = set(catalog.waste_items if waste_items is None else waste_items)
        self.orphan_policy = orphan_policy
        self.discovered_waste: dict[str, float] = {}

    def load_waste_items(self, path: str) -> None:
        """Replace the waste classification with a JSON list of item ids."""
        with open(path, "r", encoding="utf-8") as f:
            self.waste_items = set(json.load(f))
        _LOGGER.info("Loaded %s waste items from %s", len(self.waste_items), path)

    def is_waste_item(self, item_id: str) -> bool:
        return item_id in self.waste_items

    def record_waste(self, item_id: str, rate: float) -> None:
        """Add a waste production rate to the running total for this calculation.

        Non-waste items are ignored.
        """
        if not self.is_waste_item(item_id):
            return
        self.discovered_waste[item_id] = self.discovered_waste.get(item_id, 0.0) + rate
        _LOGGER.debug("Waste '%s' now at %s/min", item_id, self.discovered_waste[item_id])

    def clear(self) -> None:
        self.discovered_waste.clear()

    def _orphaned(self, message: str, *args) -> None:
        """Report waste that cannot be routed according to the orphan policy.

        Raises:
            MissingDisposalRouteError: in strict mode
        """
        if self.orphan_policy == ORPHAN_STRICT:
            raise MissingDisposalRouteError(message % args)
        _LOGGER.warning(message, *args)

    @staticmethod
    def _find_producers(needs_map: dict[str, NeedsEntry], waste_item_id: str) -> list[str]:
        """Ids of non-raw entries whose selected recipe lists the waste item as a product."""
        producers = []
        for producer_id, entry in needs_map.items():
            if entry.is_raw or producer_id == waste_item_id:
                continue
            recipe = entry.selected_recipe
            if recipe is not None and waste_item_id in recipe.products:
                producers.append(producer_id)
        return producers

    @staticmethod
    def _machines_needed(recipe: Recipe, waste_item_id: str, waste_rate: float) -> float | None:
        """Disposal machines for a waste rate, or None if the recipe takes none of the item."""
        amount = recipe.ingredient_amount(waste_item_id)
        if amount <= 0 or recipe.time <= 0:
            return None
        return waste_rate / (amount / recipe.time_minutes)

    def process_disposal(self, needs_map: dict[str, NeedsEntry]) -> list[Edge]:
        """Create a disposal node and producer edges for every recorded waste item.

        Precondition:
            needs_map holds the solved chain including byproducts
            waste was recorded with record_waste during this calculation

        Postcondition:
            for each routable waste item, needs_map gains "disposal_<item>" with
            is_waste_disposal set, all disposal recipes stored, the first one selected,
            machine_count = waste rate / per-machine intake, and level one below the
            deepest level present
            one edge per producer carrying the full waste rate is returned
            waste without a producer or disposal recipe is dropped with a warning
            (or raises in strict mode)
            recorded waste is cleared

        Args:
            needs_map: needs map to add disposal nodes to

        Returns:
            list of producer -> disposal edges

        Raises:
            MissingDisposalRouteError: in strict mode, for unroutable waste
        """
        edges: list[Edge] = []
        try:
            for waste_item_id, waste_rate in self.discovered_waste.items():
                edges.extend(self._dispose_of(needs_map, waste_item_id, waste_rate))
        finally:
            self.discovered_waste.clear()
        _LOGGER.info("Disposal processing complete, %s waste edges", len(edges))
        return edges

    def _dispose_of(self, needs_map: dict[str, NeedsEntry], waste_item_id: str, waste_rate: float) -> list[Edge]:
        """Route one waste item; returns its edges (empty when it cannot be routed)."""
        producers = self._find_producers(needs_map, waste_item_id)
        if not producers:
            self._orphaned("No producer found for waste item '%s', skipping disposal", waste_item_id)
            return []

        disposal_recipes = self.catalog.find_disposal_recipes_for_item(waste_item_id)
        if not disposal_recipes:
            self._orphaned("No disposal recipe found for waste item '%s', skipping disposal", waste_item_id)
            return []

        machines = self._machines_needed(disposal_recipes[0], waste_item_id, waste_rate)
        if machines is None:
            self._orphaned("Disposal recipe for '%s' has no usable intake, skipping disposal", waste_item_id)
            return []

        node_id = disposal_node_id(waste_item_id)
        needs_map[node_id] = NeedsEntry(
            item_id=node_id,
            original_item_id=waste_item_id,
            rate=waste_rate,
            level=max_level(needs_map) + 1,
            is_waste_disposal=True,
            all_recipes=disposal_recipes,
            selected_recipe_index=0,
            machine_count=machines,
            transport_type="belt",
        )
        _LOGGER.info("Created disposal node '%s' (%.2f machines)", node_id, machines)
        return [Edge(producer_id, node_id, waste_rate) for producer_id in producers]
