"""Deleting a node of a calculated chain together with the ingredients only it used.

Deletion edits the session in place instead of recalculating. It keeps rates, levels and
waste edges of the surviving nodes as they were; it does not re-route waste or shrink the
rates of ingredients that the deleted nodes shared with surviving ones.
"""

import logging

from needs import NeedsEntry
from production import ProductionSession, reset_session

_LOGGER = logging.getLogger("chainplanner")


def _used_elsewhere(needs_map: dict[str, NeedsEntry], ingredient_id: str, to_delete: set[str]) -> bool:
    """Whether a live entry outside to_delete consumes the ingredient in its selected recipe."""
    for item_id, entry in needs_map.items():
        if item_id in to_delete:
            continue
        recipe = entry.selected_recipe
        if recipe is not None and ingredient_id in recipe.ingredients:
            return True
    return False


def find_nodes_to_delete(needs_map: dict[str, NeedsEntry], node_id: str) -> set[str]:
    """Collect a node and, transitively, every ingredient no surviving node consumes.

    Precondition:
        node_id is a non-empty string

    Postcondition:
        returns set containing node_id
        an ingredient of a deleted node is included only when no entry outside the set
        lists it in its selected recipe
        raw entries are not expanded

    Args:
        needs_map: current needs map
        node_id: node the user deletes

    Returns:
        set of node ids to delete
    """
    to_delete = {node_id}
    stack = [node_id]
    while stack:
        current = stack.pop()
        entry = needs_map.get(current)
        if entry is None or entry.is_raw:
            continue
        recipe = entry.selected_recipe
        if recipe is None:
            continue
        for ingredient_id in recipe.ingredients:
            if ingredient_id in to_delete or ingredient_id not in needs_map:
                continue
            if not _used_elsewhere(needs_map, ingredient_id, to_delete):
                to_delete.add(ingredient_id)
                stack.append(ingredient_id)
    return to_delete


def _remove_ids(session: ProductionSession, node_ids: set[str]) -> None:
    if session.graph is not None:
        session.graph.remove_nodes(node_ids)
    for node_id in node_ids:
        session.needs_map.pop(node_id, None)
        session.positions.pop(node_id, None)
    session.waste_edges = [
        e for e in session.waste_edges if e.source not in node_ids and e.target not in node_ids
    ]


def _remaining_entries(session: ProductionSession) -> list[NeedsEntry]:
    if session.graph is not None:
        return [node.entry for node in session.graph.nodes.values()]
    return list(session.needs_map.values())


def _remove_stale_disposal(session: ProductionSession) -> None:
    """Drop disposal nodes once nothing but raw and disposal nodes is left."""
    remaining = _remaining_entries(session)
    if not all(entry.is_raw or entry.is_waste_disposal for entry in remaining):
        return
    disposal_ids = {item_id for item_id, entry in session.needs_map.items() if entry.is_waste_disposal}
    if disposal_ids:
        _LOGGER.info("Removing %s disposal nodes with no producers left", len(disposal_ids))
        _remove_ids(session, disposal_ids)


def delete_node_and_dependents(session: ProductionSession, node_id: str) -> ProductionSession:
    """Delete a node and the ingredient subtree only it needed.

    Precondition:
        session holds a calculated chain

    Postcondition:
        node_id and the ids from find_nodes_to_delete are gone from the graph, needs
        map, position cache and waste edges; graph edges touching them are dropped
        if only raw and disposal nodes remain, the disposal nodes are removed as well
        an empty result resets the session
        an unknown node_id leaves the session unchanged

    Args:
        session: production session
        node_id: node to delete

    Returns:
        the same session
    """
    if node_id not in session.needs_map:
        _LOGGER.warning("Cannot delete unknown node '%s'", node_id)
        return session

    to_delete = find_nodes_to_delete(session.needs_map, node_id)
    _LOGGER.info("Deleting %s nodes starting at '%s'", len(to_delete), node_id)
    _remove_ids(session, to_delete)
    _remove_stale_disposal(session)

    remaining = session.graph.nodes if session.graph is not None else session.needs_map
    if not remaining:
        _LOGGER.info("Nothing left after deleting '%s'", node_id)
        reset_session(session)
    return session
