"""Read-only reports over a calculated production chain."""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field

from needs import NeedsEntry
from production import ProductionSession, find_recipe_loops

_LOGGER = logging.getLogger("chainplanner")


@dataclass
class RecipeDetail:
    """How an item is made: building, machines and per-minute flows"""
    recipe_id: str
    building_name: str
    machine_count: float
    ingredients: dict[str, float]
    products: dict[str, float]


@dataclass
class SummaryNode:
    """One item in the production tree"""
    item_id: str
    name: str
    rate: float
    is_raw: bool
    recipe: RecipeDetail | None = None
    children: list["SummaryNode"] = field(default_factory=list)
    is_loop: bool = False  # item already appears higher up this branch


@dataclass
class ProductionSummary:
    """Overview of a calculated chain"""
    target_item_id: str
    target_rate: float
    main_tree: SummaryNode | None
    shared_items: dict[str, int]
    waste_items: list[NeedsEntry]
    recipe_loops: list[list[str]]
    total_power: float


def total_power(session: ProductionSession, show_raw_materials: bool = True) -> float:
    """Sum the power of every running building.

    Precondition:
        session holds a calculated chain

    Postcondition:
        returns Σ ceil(machine_count) * building power over entries with machines
        byproduct entries are excluded
        raw entries are excluded when raw materials are hidden

    Args:
        session: production session
        show_raw_materials: whether raw entries count

    Returns:
        total power draw
    """
    total = 0.0
    for entry in session.needs_map.values():
        if entry.is_byproduct or entry.machine_count <= 0:
            continue
        if entry.is_raw and not show_raw_materials:
            continue
        recipe = entry.selected_recipe
        if recipe is None:
            continue
        building = session.catalog.get_building(recipe.building_id)
        total += math.ceil(entry.machine_count) * building.power
    return total


def _recipe_detail(session: ProductionSession, entry: NeedsEntry) -> RecipeDetail | None:
    recipe = entry.selected_recipe
    if recipe is None or recipe.time <= 0:
        return None
    per_minute = entry.machine_count / recipe.time_minutes
    return RecipeDetail(
        recipe_id=recipe.recipe_id,
        building_name=session.catalog.get_building(recipe.building_id).name,
        machine_count=entry.machine_count,
        ingredients={item_id: amount * per_minute for item_id, amount in recipe.ingredients.items()},
        products={item_id: amount * per_minute for item_id, amount in recipe.products.items()},
    )


def _build_tree(session: ProductionSession, item_id: str, rate: float, visited: frozenset) -> SummaryNode:
    """Summary subtree of an item; visited holds the items above it on this branch."""
    name = session.catalog.get_item(item_id).name
    entry = session.needs_map.get(item_id)
    is_raw = entry is None or entry.is_raw
    if item_id in visited:
        return SummaryNode(item_id, name, rate, is_raw, is_loop=True)

    node = SummaryNode(item_id, name, rate, is_raw)
    if is_raw:
        return node
    node.recipe = _recipe_detail(session, entry)
    if node.recipe is None:
        return node

    visited = visited | {item_id}
    for ingredient_id, ingredient_rate in node.recipe.ingredients.items():
        node.children.append(_build_tree(session, ingredient_id, ingredient_rate, visited))
    return node


def find_shared_items(session: ProductionSession) -> dict[str, int]:
    """Items consumed by more than one selected recipe (the target excluded), with usage counts."""
    usage = Counter()
    for entry in session.needs_map.values():
        recipe = entry.selected_recipe
        if recipe is None or entry.is_raw:
            continue
        usage.update(recipe.ingredients.keys())
    return {
        item_id: count
        for item_id, count in sorted(usage.items())
        if count > 1 and item_id != session.target_item_id
    }


def analyze_production(session: ProductionSession, show_raw_materials: bool = True) -> ProductionSummary:
    """Summarize a calculated chain.

    Precondition:
        session holds a calculated chain (an empty session gives an empty summary)

    Postcondition:
        main_tree starts at the target with its rate; children carry the per-minute
        ingredient flow of their parent's machines, and an item repeated on its own
        branch is marked is_loop instead of expanded
        shared_items, waste_items (disposal entries), recipe_loops and total_power
        describe the whole needs map

    Args:
        session: production session
        show_raw_materials: whether raw entries count towards power

    Returns:
        ProductionSummary
    """
    target_item_id = session.target_item_id
    target = session.needs_map.get(target_item_id) if target_item_id else None
    main_tree = None
    if target is not None:
        main_tree = _build_tree(session, target_item_id, target.rate, frozenset())

    summary = ProductionSummary(
        target_item_id=target_item_id,
        target_rate=session.target_rate,
        main_tree=main_tree,
        shared_items=find_shared_items(session),
        waste_items=[e for e in session.needs_map.values() if e.is_waste_disposal],
        recipe_loops=find_recipe_loops(
            session, [i for i, e in session.needs_map.items() if not e.is_waste_disposal]
        ),
        total_power=total_power(session, show_raw_materials),
    )
    _LOGGER.debug("Summary: %s shared items, %s loops", len(summary.shared_items), len(summary.recipe_loops))
    return summary


def format_summary(summary: ProductionSummary) -> str:
    """Render a summary as indented text."""
    lines = []

    def add_node(node: SummaryNode, depth: int):
        text = f"{'  ' * depth}{node.name}: {node.rate:.2f}/min"
        if node.is_loop:
            text += " (loop)"
        elif node.recipe is not None:
            text += f" [{node.recipe.building_name} x{node.recipe.machine_count:.2f}]"
        elif node.is_raw:
            text += " (raw)"
        lines.append(text)
        for child in node.children:
            add_node(child, depth + 1)

    if summary.main_tree is not None:
        add_node(summary.main_tree, 0)
    if summary.shared_items:
        lines.append("")
        lines.append("Shared items:")
        for item_id, count in summary.shared_items.items():
            lines.append(f"  - {item_id}: used by {count} recipes")
    if summary.waste_items:
        lines.append("")
        lines.append("Waste disposal:")
        for entry in summary.waste_items:
            lines.append(f"  - {entry.original_item_id}: {entry.rate:.2f}/min, {entry.machine_count:.2f} machines")
    if summary.recipe_loops:
        lines.append("")
        lines.append("Recipe loops:")
        for loop in summary.recipe_loops:
            lines.append(f"  - {' <-> '.join(loop)}")
    lines.append("")
    lines.append(f"Total power: {summary.total_power:.1f}")
    return "\n".join(lines)
