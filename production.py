"""Production chain calculation: discovery, rate solving, needs population and levels."""

import logging
import math
from dataclasses import dataclass, field

from tarjan import tarjan

from linear_system import build_linear_system, solve_linear_system
from needs import DEFAULT_TRANSPORT_TYPE, DISPOSAL_PREFIX, Edge, NeedsEntry
from production_graph import DEFAULT_CANVAS_WIDTH, FrameScheduler, ProductionGraph
from recipes import Recipe, RecipeCatalog
from waste import WasteManager

_LOGGER = logging.getLogger("chainplanner")

# Solved rates at or below this are numerical noise, not production
RATE_EPSILON = 1e-6


class ProductionError(ValueError):
    """a production chain could not be calculated"""


class InvalidInputError(ProductionError):
    """the target item or rate is missing or invalid"""


class InfeasibleError(ProductionError):
    """the balance system of the chain has no unique solution"""


class EmptyChainError(ProductionError):
    """chain discovery found no items"""


@dataclass
class ProductionSession:
    """All mutable state of one production chain: inputs, recipe choices and results."""

    catalog: RecipeCatalog
    waste: WasteManager | None = None
    target_item_id: str | None = None
    target_rate: float = 0.0
    selected_recipes: dict[str, int] = field(default_factory=dict)
    default_recipes: dict[str, int] = field(default_factory=dict)
    needs_map: dict[str, NeedsEntry] = field(default_factory=dict)
    waste_edges: list[Edge] = field(default_factory=list)
    graph: ProductionGraph | None = None
    positions: dict[str, tuple[float, float]] = field(default_factory=dict)

    def __post_init__(self):
        if self.waste is None:
            self.waste = WasteManager(self.catalog)

    def remember_position(self, node_id: str, position: tuple[float, float]) -> None:
        """Store a user-placed node position in the position cache."""
        self.positions[node_id] = position


def recipe_index_for(session: ProductionSession, item_id: str) -> int:
    """Index of the recipe used for an item: explicit selection, then default preference, then 0."""
    return session.selected_recipes.get(item_id, session.default_recipes.get(item_id, 0))


def resolve_recipe(session: ProductionSession, item_id: str) -> Recipe | None:
    """Get the recipe currently selected for an item.

    Precondition:
        item_id is a non-empty string

    Postcondition:
        returns the recipe at recipe_index_for(item_id) among the item's recipes
        returns None when no recipe produces the item
        an out-of-range index is logged and treated as no recipe

    Args:
        session: production session
        item_id: item to look up

    Returns:
        selected Recipe or None
    """
    recipes = session.catalog.find_recipes_for_item(item_id)
    if not recipes:
        return None
    index = recipe_index_for(session, item_id)
    if not 0 <= index < len(recipes):
        _LOGGER.warning(
            "Recipe index %s out of range for '%s' (%s recipes), treating as raw",
            index,
            item_id,
            len(recipes),
        )
        return None
    return recipes[index]


def discover_all_items(session: ProductionSession, root_item_id: str) -> set[str]:
    """Find every item taking part in the chain of an item.

    Precondition:
        root_item_id is a non-empty string

    Postcondition:
        returns set containing root_item_id and everything reachable through the
        ingredients and products of each item's selected recipe
        items without recipes are dead ends

    Args:
        session: production session (catalog and recipe selections)
        root_item_id: item the chain is built for

    Returns:
        set of item ids
    """
    visited: set[str] = set()
    stack = [root_item_id]
    while stack:
        item_id = stack.pop()
        if item_id in visited:
            continue
        visited.add(item_id)

        recipe = resolve_recipe(session, item_id)
        if recipe is None:
            continue
        stack.extend(recipe.ingredients)
        # Co-products make byproducts visible to later stages
        stack.extend(recipe.products)

    _LOGGER.debug("Discovered %s items for '%s'", len(visited), root_item_id)
    return visited


def find_recipe_loops(session: ProductionSession, item_ids) -> list[list[str]]:
    """Find groups of items whose selected recipes depend on each other.

    Precondition:
        item_ids is an iterable of item ids

    Postcondition:
        returns strongly connected components of the ingredient graph restricted to
        item_ids that contain more than one item or an item consuming itself
        each group is sorted, groups are sorted

    Args:
        session: production session
        item_ids: items to consider

    Returns:
        list of item id groups
    """
    item_ids = set(item_ids)
    dependencies = {}
    for item_id in item_ids:
        recipe = resolve_recipe(session, item_id)
        ingredients = recipe.ingredients if recipe is not None else ()
        dependencies[item_id] = [i for i in ingredients if i in item_ids]

    loops = []
    for component in tarjan(dependencies):
        if len(component) > 1 or component[0] in dependencies[component[0]]:
            loops.append(sorted(component))
    return sorted(loops)


def _machine_count(recipe: Recipe | None, item_id: str, rate: float) -> float:
    """Machines needed to produce rate items per minute with a recipe (0 if it cannot)."""
    if recipe is None or recipe.time <= 0:
        return 0.0
    amount = recipe.product_amount(item_id)
    if amount <= 0:
        return 0.0
    return rate / (amount / recipe.time_minutes)


def _transport_for(catalog: RecipeCatalog, item_id: str, rate: float) -> tuple[str, float]:
    """Transport type of an item and how many lines of it the rate needs."""
    item = catalog.get_item(item_id)
    transport_type = item.transport_type or DEFAULT_TRANSPORT_TYPE
    speed = catalog.get_transport_speed(transport_type)
    if speed is None:
        _LOGGER.warning("Unknown transport type '%s' for '%s'", transport_type, item_id)
        return transport_type, 0.0
    return transport_type, rate / speed


def _add_solved_entries(
    session: ProductionSession,
    item_index_map: dict[str, int],
    solution: list[float],
) -> None:
    """Insert one needs entry per item with a meaningful solved rate."""
    for item_id, index in item_index_map.items():
        rate = solution[index]
        if rate <= RATE_EPSILON:
            continue

        all_recipes = session.catalog.find_recipes_for_item(item_id) or []
        selected_index = recipe_index_for(session, item_id)
        selected = all_recipes[selected_index] if 0 <= selected_index < len(all_recipes) else None
        transport_type, transport_count = _transport_for(session.catalog, item_id, rate)

        session.needs_map[item_id] = NeedsEntry(
            item_id=item_id,
            rate=rate,
            is_raw=selected is None or not selected.ingredients,
            is_target=item_id == session.target_item_id,
            all_recipes=all_recipes,
            selected_recipe_index=selected_index,
            machine_count=_machine_count(selected, item_id, rate),
            transport_type=transport_type,
            transport_count=transport_count,
        )


def _add_byproducts(session: ProductionSession) -> None:
    """Fold the co-products of every running recipe into the needs map.

    Waste co-products are only recorded with the waste manager. Other co-products add
    to an existing entry's rate or become a new byproduct entry without machines.
    Each recipe is counted once even when several of its products have entries.
    """
    processed_recipes: set[str] = set()
    for entry in list(session.needs_map.values()):
        if entry.is_raw or entry.machine_count <= 0:
            continue
        recipe = entry.selected_recipe
        if recipe is None or recipe.recipe_id in processed_recipes:
            continue
        processed_recipes.add(recipe.recipe_id)

        primary_amount = recipe.products.get(entry.item_id, 0.0)
        if primary_amount <= 0:
            continue

        for product_id, amount in recipe.products.items():
            if product_id == entry.item_id:
                continue
            byproduct_rate = entry.rate * (amount / primary_amount)

            if session.waste.is_waste_item(product_id):
                session.waste.record_waste(product_id, byproduct_rate)
                continue

            existing = session.needs_map.get(product_id)
            if existing is not None:
                existing.rate += byproduct_rate
                existing.transport_count = _transport_for(session.catalog, product_id, existing.rate)[1]
                _LOGGER.debug("Byproduct '%s' of '%s' added to existing entry", product_id, recipe.recipe_id)
                continue

            byproduct_recipes = session.catalog.find_recipes_for_item(product_id) or []
            transport_type, transport_count = _transport_for(session.catalog, product_id, byproduct_rate)
            session.needs_map[product_id] = NeedsEntry(
                item_id=product_id,
                rate=byproduct_rate,
                is_raw=not byproduct_recipes,
                is_byproduct=True,
                all_recipes=byproduct_recipes,
                selected_recipe_index=0,
                machine_count=0.0,
                transport_type=transport_type,
                transport_count=transport_count,
            )
            _LOGGER.debug("Byproduct '%s' at %s/min from '%s'", product_id, byproduct_rate, recipe.recipe_id)


def populate_needs_map(
    session: ProductionSession,
    item_index_map: dict[str, int],
    solution: list[float],
) -> None:
    """Turn a solved rate vector into needs entries.

    Precondition:
        solution solves the system built over item_index_map for session's target
        session.needs_map is empty

    Postcondition:
        every item with rate above RATE_EPSILON has an entry with its machine count,
        raw flag and transport requirement
        non-waste co-products of running recipes are folded in as byproducts
        waste co-products are recorded with session.waste
        levels are assigned

    Args:
        session: production session to fill
        item_index_map: item id to solution index
        solution: solved rate per item
    """
    _add_solved_entries(session, item_index_map, solution)
    _add_byproducts(session)
    calculate_levels(session, session.target_item_id)


def calculate_levels(session: ProductionSession, target_item_id: str) -> None:
    """Assign every needs entry its depth below the target.

    Precondition:
        target_item_id is a key of session.needs_map (otherwise every entry gets 0)

    Postcondition:
        entries reachable from the target through selected-recipe ingredients get the
        length of their shortest ingredient path from the target
        recipe loops terminate the path they close
        disposal entries are never expanded; unreachable disposal entries go one level
        below the deepest reached entry, unreachable byproduct entries one level below
        their deepest producer, every other unreachable entry gets level 0

    Args:
        session: production session
        target_item_id: root of the chain
    """
    needs_map = session.needs_map
    levels: dict[str, int] = {}

    def assign(item_id: str, level: int, path: set[str]):
        current = levels.get(item_id)
        if current is not None and current <= level:
            return
        if item_id in path:
            _LOGGER.warning("Recipe loop through '%s', stopping level assignment there", item_id)
            return
        levels[item_id] = level
        if item_id.startswith(DISPOSAL_PREFIX):
            return

        recipe = needs_map[item_id].selected_recipe
        if recipe is None:
            return
        path.add(item_id)
        for ingredient_id in recipe.ingredients:
            if ingredient_id in needs_map:
                assign(ingredient_id, level + 1, path)
        path.discard(item_id)

    if target_item_id in needs_map:
        assign(target_item_id, 0, set())

    deepest = max(levels.values(), default=0)
    for item_id, entry in needs_map.items():
        if item_id in levels:
            entry.level = levels[item_id]
        elif entry.is_waste_disposal:
            entry.level = deepest + 1
        elif entry.is_byproduct:
            producer_levels = [
                levels[producer_id]
                for producer_id, producer in needs_map.items()
                if producer_id in levels
                and not producer.is_byproduct
                and producer.selected_recipe is not None
                and item_id in producer.selected_recipe.products
            ]
            entry.level = max(producer_levels) + 1 if producer_levels else 0
        else:
            entry.level = 0


def validate_target(session: ProductionSession) -> tuple[str, float]:
    """Check the session's target before anything is calculated.

    Raises:
        InvalidInputError: no target, unknown target, or rate not positive and finite
    """
    target_item_id = session.target_item_id
    if not target_item_id:
        raise InvalidInputError("No target item selected")
    if not session.catalog.has_item(target_item_id):
        raise InvalidInputError(f"Unknown target item '{target_item_id}'")
    try:
        rate = float(session.target_rate)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid target rate '{session.target_rate}'") from exc
    if not math.isfinite(rate) or rate <= 0:
        raise InvalidInputError(f"Target rate must be a positive number, got {session.target_rate}")
    return target_item_id, rate


def _clear_results(session: ProductionSession) -> None:
    if session.graph is not None:
        session.graph.stop_simulation()
    session.graph = None
    session.needs_map.clear()
    session.waste_edges = []
    session.waste.clear()


def _capture_positions(
    session: ProductionSession,
    preserve_positions: bool,
    positions_to_restore: dict[str, tuple[float, float]] | None,
) -> dict[str, tuple[float, float]]:
    """Positions to carry over into the next graph: explicit ones win over the live graph."""
    if not preserve_positions:
        return {}
    if positions_to_restore is not None:
        return dict(positions_to_restore)
    if session.graph is not None:
        return session.graph.positions()
    return dict(session.positions)


def recalculate(
    session: ProductionSession,
    preserve_positions: bool = False,
    positions_to_restore: dict[str, tuple[float, float]] | None = None,
    show_raw_materials: bool = True,
    physics_enabled: bool = True,
    scheduler: FrameScheduler | None = None,
    canvas_width: float = DEFAULT_CANVAS_WIDTH,
) -> ProductionSession:
    """Rebuild the needs map, waste edges and graph of a session from scratch.

    Precondition:
        session.target_item_id and session.target_rate are set

    Postcondition:
        session.needs_map holds every item of the chain with solved rates, byproducts
        and disposal nodes, with levels assigned
        session.waste_edges holds the producer -> disposal edges
        session.graph is a laid-out ProductionGraph
        with preserve_positions, nodes that still exist keep their previous positions
        and session.positions holds exactly those positions
        on failure, needs map, edges and graph are all cleared

    Args:
        session: production session
        preserve_positions: keep node positions of the previous graph
        positions_to_restore: positions to use instead of the live graph's
        show_raw_materials: include raw and disposal nodes in the graph
        physics_enabled: start the de-overlap simulation after layout
        scheduler: frame scheduler driving the simulation
        canvas_width: width the hierarchical layout centers rows in

    Returns:
        the same session

    Raises:
        InvalidInputError: if the target is missing or the rate is invalid
        EmptyChainError: if discovery finds nothing
        InfeasibleError: if the rates cannot be solved
    """
    target_item_id, target_rate = validate_target(session)
    positions = _capture_positions(session, preserve_positions, positions_to_restore)
    _LOGGER.info("Calculating production of '%s' at %s/min", target_item_id, target_rate)

    _clear_results(session)

    item_ids = discover_all_items(session, target_item_id)
    if not item_ids:
        _LOGGER.error("No items found for '%s'", target_item_id)
        raise EmptyChainError(f"No production chain found for '{target_item_id}'")

    system = build_linear_system(
        item_ids, target_item_id, target_rate, lambda item_id: resolve_recipe(session, item_id)
    )
    solution = solve_linear_system(system.matrix, system.vector)
    if solution is None:
        _clear_results(session)
        loops = find_recipe_loops(session, item_ids)
        if loops:
            _LOGGER.error("Could not solve '%s'; recipe loops: %s", target_item_id, loops)
        else:
            _LOGGER.error("Could not solve '%s'", target_item_id)
        raise InfeasibleError(f"Could not solve production chain for '{target_item_id}'")

    try:
        populate_needs_map(session, system.item_index_map, solution)
        session.waste_edges = session.waste.process_disposal(session.needs_map)
    except ValueError:
        _clear_results(session)
        raise
    calculate_levels(session, target_item_id)

    graph = ProductionGraph(
        session.needs_map,
        session.waste_edges,
        target_item_id,
        catalog=session.catalog,
        show_raw_materials=show_raw_materials,
        physics_enabled=physics_enabled,
        scheduler=scheduler,
        canvas_width=canvas_width,
        on_position_changed=session.remember_position,
    )
    session.positions = graph.restore_positions(positions)
    session.graph = graph
    graph.apply_layout("hierarchical")

    _LOGGER.info("Calculation complete: %s items, %s waste edges", len(session.needs_map), len(session.waste_edges))
    return session


def reset_session(session: ProductionSession) -> ProductionSession:
    """Stop the simulation and clear target, results, graph and position cache."""
    _clear_results(session)
    session.target_item_id = None
    session.target_rate = 0.0
    session.positions = {}
    _LOGGER.info("Production session reset")
    return session
