"""Production graph: node/edge model, hierarchical layout and de-overlap simulation."""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

import graphviz

from needs import Edge, NeedsEntry
from recipes import CatalogError, RecipeCatalog

_LOGGER = logging.getLogger("chainplanner")

REPULSION_STRENGTH = 0.1
DAMPING = 0.85
MAX_VELOCITY = 8
SEPARATION_DISTANCE = 35
SETTLING_FRAMES = 40

LAYOUT_NODE_WIDTH = 240
LAYOUT_LEVEL_HEIGHT = 200
LAYOUT_TOP_MARGIN = 100
LAYOUT_MIN_X = 10
DEFAULT_CANVAS_WIDTH = 800

DEFAULT_NODE_WIDTH = 200
DEFAULT_NODE_HEIGHT = 100

# graphviz positions are in inches
POINTS_PER_INCH = 72
MAX_EDGE_STRIPES = 4


class FrameScheduler:
    """Source of animation frames for the simulation loop.

    Implementations call a requested callback once, on the next frame, unless the
    request is cancelled first.
    """

    def request_frame(self, callback: Callable[[], None]) -> int:
        raise NotImplementedError

    def cancel_frame(self, handle: int) -> None:
        raise NotImplementedError


class ManualFrameScheduler(FrameScheduler):
    """Frame scheduler advanced explicitly with run_frames (CLI and tests)."""

    def __init__(self):
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_handle = 1

    @property
    def pending(self) -> int:
        return len(self._callbacks)

    def request_frame(self, callback: Callable[[], None]) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._callbacks[handle] = callback
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def run_frames(self, count: int = 1) -> int:
        """Run up to count frames; returns how many frames had work to do.

        Callbacks requested while a frame runs are deferred to the next frame.
        """
        frames = 0
        for _ in range(count):
            if not self._callbacks:
                break
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            for callback in callbacks:
                callback()
            frames += 1
        return frames


@dataclass
class GraphNode:
    """A needs entry placed on the canvas. x, y is the top-left corner of the node box."""

    node_id: str
    entry: NeedsEntry
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    is_pinned: bool = False


@dataclass(frozen=True)
class EdgePath:
    """Drawable segment of an edge, clipped to the borders of both node boxes."""

    edge: Edge
    start: tuple[float, float]
    end: tuple[float, float]


def _stripe_color(lines: int) -> str:
    """Generate graphviz color string with one black stripe per transport line, white between.

    Precondition:
        lines is a positive integer

    Postcondition:
        returns colon-separated color string for graphviz
        1 line: "black", 2 lines: "black:white:black", ...
        capped at MAX_EDGE_STRIPES black stripes

    Args:
        lines: transport lines the flow needs

    Returns:
        graphviz color specification string
    """
    stripes = []
    lines = max(1, min(lines, MAX_EDGE_STRIPES))
    for i in range(lines):
        stripes.append("black")
        if i < lines - 1:
            stripes.append("white")
    return ":".join(stripes)


def _boundary_point(
    center: tuple[float, float],
    half_size: tuple[float, float],
    direction: tuple[float, float],
) -> tuple[float, float]:
    """Point where a ray from a box's center along a unit direction leaves the box."""
    cx, cy = center
    hw, hh = half_size
    ux, uy = direction
    t_x = hw / abs(ux) if ux else math.inf
    t_y = hh / abs(uy) if uy else math.inf
    t = min(t_x, t_y)
    return cx + ux * t, cy + uy * t


class ProductionGraph:
    """Node/edge model of a needs map with layout, physics and rendering state.

    The simulation is idle until start_simulation, then runs one physics step and one
    render per scheduler frame. While settling_frames is positive the physics step
    applies no movement, so restored positions show as they were saved.
    """

    def __init__(
        self,
        needs_map: dict[str, NeedsEntry],
        waste_edges: list[Edge],
        target_item_id: str,
        catalog: RecipeCatalog | None = None,
        show_raw_materials: bool = True,
        physics_enabled: bool = True,
        scheduler: FrameScheduler | None = None,
        canvas_width: float = DEFAULT_CANVAS_WIDTH,
        node_size: Callable[[GraphNode], tuple[float, float]] | None = None,
        on_position_changed: Callable[[str, tuple[float, float]], None] | None = None,
    ):
        """Build nodes and edges from a needs map.

        Precondition:
            needs_map is populated and levelled
            waste_edges are the producer -> disposal edges of the same calculation

        Postcondition:
            one node per shown entry; the target is always shown, raw and disposal
            entries only with show_raw_materials
            edges contain the waste edges (only with show_raw_materials) followed by one
            ingredient -> consumer edge per ingredient of every running recipe and one
            producer -> byproduct edge per byproduct entry a running recipe makes
            only edges between shown nodes are kept
            simulation is idle

        Args:
            needs_map: solved chain
            waste_edges: producer -> disposal edges
            target_item_id: item the chain produces
            catalog: used for display names and transport speeds in graphviz export
            show_raw_materials: show raw and disposal nodes
            physics_enabled: whether apply_layout starts the simulation
            scheduler: frame source, a ManualFrameScheduler when None
            canvas_width: width rows are centered in
            node_size: measured (width, height) of a node box, default 200x100
            on_position_changed: called with (node_id, (x, y)) when a drag ends
        """
        self.target_item_id = target_item_id
        self.catalog = catalog
        self.show_raw_materials = show_raw_materials
        self.physics_enabled = physics_enabled
        self.scheduler = scheduler if scheduler is not None else ManualFrameScheduler()
        self.canvas_width = canvas_width
        self._node_size = node_size
        self._on_position_changed = on_position_changed

        self.is_simulating = False
        self.settling_frames = 0
        self._frame_handle: int | None = None
        self.edge_paths: list[EdgePath] = []

        self.nodes: dict[str, GraphNode] = {}
        for item_id, entry in needs_map.items():
            if self._is_shown(entry):
                self.nodes[item_id] = GraphNode(item_id, entry)

        self.edges: list[Edge] = []
        if show_raw_materials:
            self.edges.extend(e for e in waste_edges if e.source in self.nodes and e.target in self.nodes)
        self.edges.extend(self._recipe_edges(needs_map))
        _LOGGER.debug("Graph built: %s nodes, %s edges", len(self.nodes), len(self.edges))

    def _is_shown(self, entry: NeedsEntry) -> bool:
        if entry.item_id == self.target_item_id or self.show_raw_materials:
            return True
        return not (entry.is_raw or entry.is_waste_disposal)

    def _recipe_edges(self, needs_map: dict[str, NeedsEntry]) -> list[Edge]:
        """Ingredient -> consumer and producer -> byproduct edges with per-minute rates.

        Byproduct entries run no machines of their own and draw no ingredient edges.
        Each recipe links its byproducts once, from the first entry running it.
        """
        edges = []
        linked_recipes: set[str] = set()
        for item_id, entry in needs_map.items():
            if entry.is_waste_disposal or entry.is_raw or entry.is_byproduct:
                continue
            recipe = entry.selected_recipe
            if recipe is None or recipe.time <= 0 or item_id not in self.nodes:
                continue
            machines = entry.machine_count
            if not machines:
                product_amount = recipe.product_amount(item_id)
                if product_amount <= 0:
                    continue
                machines = entry.rate / (product_amount / recipe.time_minutes)
            for ingredient_id, amount in recipe.ingredients.items():
                if ingredient_id not in self.nodes:
                    continue
                edges.append(Edge(ingredient_id, item_id, amount / recipe.time_minutes * machines))

            if recipe.recipe_id in linked_recipes:
                continue
            linked_recipes.add(recipe.recipe_id)
            for product_id, amount in recipe.products.items():
                product = needs_map.get(product_id)
                if product_id == item_id or product is None or not product.is_byproduct:
                    continue
                if product_id in self.nodes:
                    edges.append(Edge(item_id, product_id, amount / recipe.time_minutes * machines))
        return edges

    # ========== Geometry ==========

    def node_size(self, node: GraphNode) -> tuple[float, float]:
        if self._node_size is not None:
            return self._node_size(node)
        return DEFAULT_NODE_WIDTH, DEFAULT_NODE_HEIGHT

    def node_center(self, node: GraphNode) -> tuple[float, float]:
        width, height = self.node_size(node)
        return node.x + width / 2, node.y + height / 2

    def get_connection_points(
        self, source: GraphNode, target: GraphNode
    ) -> tuple[tuple[float, float], tuple[float, float]]:
        """Clip the line between two node centers to both node borders.

        Precondition:
            source and target are nodes of this graph

        Postcondition:
            returns (start, end) where start lies on the border of source and end on
            the border of target, both on the line through the two centers
            coincident centers return the centers unchanged

        Args:
            source: node the edge leaves
            target: node the edge enters

        Returns:
            tuple of start and end points
        """
        source_center = self.node_center(source)
        target_center = self.node_center(target)
        dx = target_center[0] - source_center[0]
        dy = target_center[1] - source_center[1]
        length = math.hypot(dx, dy)
        if length == 0:
            return source_center, target_center

        ux, uy = dx / length, dy / length
        source_width, source_height = self.node_size(source)
        target_width, target_height = self.node_size(target)
        start = _boundary_point(source_center, (source_width / 2, source_height / 2), (ux, uy))
        end = _boundary_point(target_center, (target_width / 2, target_height / 2), (-ux, -uy))
        return start, end

    # ========== Layout ==========

    def has_positions(self) -> bool:
        return any(node.x != 0 or node.y != 0 for node in self.nodes.values())

    def restore_positions(self, positions: dict[str, tuple[float, float]]) -> dict[str, tuple[float, float]]:
        """Place nodes at saved positions; returns the positions that matched a node."""
        restored = {}
        for node_id, (x, y) in positions.items():
            node = self.nodes.get(node_id)
            if node is None:
                continue
            node.x, node.y = x, y
            restored[node_id] = (x, y)
        if restored:
            _LOGGER.debug("Restored %s of %s node positions", len(restored), len(positions))
        return restored

    def apply_layout(self, layout_type: str = "hierarchical", force_relayout: bool = False) -> None:
        """Position the nodes and start the simulation.

        Precondition:
            layout_type is "hierarchical"

        Postcondition:
            if any node already has a position (and force_relayout is False), positions
            are kept and a settling window of SETTLING_FRAMES frames begins
            otherwise each level becomes a row centered in the canvas, level 0 at the top,
            rows LAYOUT_LEVEL_HEIGHT apart, nodes LAYOUT_NODE_WIDTH apart, velocities reset
            simulation is started when physics is enabled

        Args:
            layout_type: layout algorithm
            force_relayout: ignore existing positions

        Raises:
            ValueError: if layout_type is unknown
        """
        if layout_type != "hierarchical":
            raise ValueError(f"Unknown layout type '{layout_type}'")

        if not force_relayout and self.has_positions():
            self.settling_frames = SETTLING_FRAMES
            _LOGGER.info("Keeping existing node positions, settling for %s frames", SETTLING_FRAMES)
        else:
            self._layout_rows()

        if self.physics_enabled:
            self.start_simulation()

    def _layout_rows(self) -> None:
        rows = defaultdict(list)
        for node in self.nodes.values():
            rows[node.entry.level].append(node)

        for row_index, level in enumerate(sorted(rows)):
            row = rows[level]
            start_x = max(LAYOUT_MIN_X, (self.canvas_width - len(row) * LAYOUT_NODE_WIDTH) / 2)
            for index, node in enumerate(row):
                node.x = start_x + index * LAYOUT_NODE_WIDTH
                node.y = row_index * LAYOUT_LEVEL_HEIGHT + LAYOUT_TOP_MARGIN
                node.vx = node.vy = 0.0
        _LOGGER.info("Hierarchical layout applied to %s nodes in %s rows", len(self.nodes), len(rows))

    # ========== Simulation ==========

    def start_simulation(self) -> None:
        if self.is_simulating:
            return
        self.is_simulating = True
        self._frame_handle = self.scheduler.request_frame(self.simulate)
        _LOGGER.info("Simulation started")

    def stop_simulation(self) -> None:
        if self._frame_handle is not None:
            self.scheduler.cancel_frame(self._frame_handle)
            self._frame_handle = None
        if self.is_simulating:
            self.is_simulating = False
            _LOGGER.info("Simulation stopped")

    def simulate(self) -> None:
        """One animation frame: physics step, render, and request the next frame."""
        self._frame_handle = None
        if not self.is_simulating:
            return
        self.step_physics()
        self.render()
        if self.is_simulating:
            self._frame_handle = self.scheduler.request_frame(self.simulate)

    def _repulsion(self, node: GraphNode, other: GraphNode, strength: float, tie_sign: float) -> tuple[float, float]:
        """Force pushing node away from other, zero when their boxes are far enough apart."""
        width, height = self.node_size(node)
        other_width, other_height = self.node_size(other)

        # Gaps between the boxes along each axis, 0 where they overlap on that axis
        gap_x = max(0.0, max(node.x, other.x) - min(node.x + width, other.x + other_width))
        gap_y = max(0.0, max(node.y, other.y) - min(node.y + height, other.y + other_height))

        if gap_x == 0 and gap_y == 0:
            force = strength * SEPARATION_DISTANCE
        else:
            distance = math.hypot(gap_x, gap_y)
            if distance >= SEPARATION_DISTANCE:
                return 0.0, 0.0
            force = strength * (SEPARATION_DISTANCE - distance)

        cx, cy = self.node_center(node)
        ocx, ocy = self.node_center(other)
        dx, dy = cx - ocx, cy - ocy
        length = math.hypot(dx, dy)
        if length == 0:
            return tie_sign * force, 0.0
        return dx / length * force, dy / length * force

    def step_physics(self) -> None:
        """Apply one step of pairwise box repulsion to every unpinned node.

        Precondition:
            none

        Postcondition:
            while settling, settling_frames is decremented and no node moves
            otherwise each unpinned node's velocity becomes (v + f) * DAMPING clamped to
            MAX_VELOCITY, and its position advances by that velocity
            pinned nodes are neither pushed nor moved
        """
        strength, damping, max_velocity = REPULSION_STRENGTH, DAMPING, MAX_VELOCITY
        if self.settling_frames > 0:
            strength = damping = max_velocity = 0
            self.settling_frames -= 1

        nodes = list(self.nodes.values())
        for index, node in enumerate(nodes):
            if node.is_pinned:
                continue
            fx = fy = 0.0
            for other_index, other in enumerate(nodes):
                if other is node:
                    continue
                # Nodes stacked on the same center split left/right by their order
                tie_sign = -1.0 if index < other_index else 1.0
                force_x, force_y = self._repulsion(node, other, strength, tie_sign)
                fx += force_x
                fy += force_y

            node.vx = (node.vx + fx) * damping
            node.vy = (node.vy + fy) * damping
            speed = math.hypot(node.vx, node.vy)
            if speed > max_velocity:
                scale = max_velocity / speed
                node.vx *= scale
                node.vy *= scale
            node.x += node.vx
            node.y += node.vy

    def render(self) -> list[EdgePath]:
        """Recompute the clipped segment of every edge from current node positions."""
        paths = []
        for edge in self.edges:
            source = self.nodes.get(edge.source)
            target = self.nodes.get(edge.target)
            if source is None or target is None:
                continue
            start, end = self.get_connection_points(source, target)
            paths.append(EdgePath(edge, start, end))
        self.edge_paths = paths
        return paths

    # ========== Dragging ==========

    def pin_node(self, node_id: str) -> None:
        node = self.nodes[node_id]
        node.is_pinned = True
        node.vx = node.vy = 0.0

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.nodes[node_id]
        node.x, node.y = x, y

    def release_node(self, node_id: str) -> None:
        """End a drag: the node rejoins the simulation and its position is reported."""
        node = self.nodes[node_id]
        node.is_pinned = False
        if self._on_position_changed is not None:
            self._on_position_changed(node_id, (node.x, node.y))

    # ========== Queries and mutation ==========

    def positions(self) -> dict[str, tuple[float, float]]:
        return {node_id: (node.x, node.y) for node_id, node in self.nodes.items()}

    def remove_nodes(self, node_ids) -> None:
        """Drop nodes and every edge touching them."""
        node_ids = set(node_ids)
        for node_id in node_ids:
            self.nodes.pop(node_id, None)
        self.edges = [e for e in self.edges if e.source not in node_ids and e.target not in node_ids]
        self.edge_paths = [
            p for p in self.edge_paths if p.edge.source not in node_ids and p.edge.target not in node_ids
        ]

    # ========== Export ==========

    def _display_name(self, item_id: str) -> str:
        if self.catalog is None:
            return item_id
        try:
            return self.catalog.get_item(item_id).name
        except CatalogError:
            return item_id

    def _node_label(self, node: GraphNode) -> str:
        entry = node.entry
        if entry.is_waste_disposal:
            lines = [f"Disposal: {self._display_name(entry.original_item_id)}"]
        else:
            lines = [self._display_name(entry.item_id)]
        lines.append(f"{entry.rate:.2f}/min")

        recipe = entry.selected_recipe
        if recipe is not None and entry.machine_count > 0:
            building_name = recipe.building_id
            if self.catalog is not None:
                building_name = self.catalog.get_building(recipe.building_id).name
            lines.append(f"{building_name} x{entry.machine_count:.2f}")
        return "\n".join(lines)

    @staticmethod
    def _node_color(entry: NeedsEntry) -> str:
        if entry.is_target:
            return "gold"
        if entry.is_waste_disposal:
            return "salmon"
        if entry.is_byproduct:
            return "lightgrey"
        if entry.is_raw:
            return "lightblue"
        return "white"

    def _edge_lines(self, edge: Edge) -> int:
        """Transport lines an edge needs at its source's transport speed (1 when unknown)."""
        if self.catalog is None:
            return 1
        speed = self.catalog.get_transport_speed(self.nodes[edge.source].entry.transport_type)
        if not speed:
            return 1
        return max(1, math.ceil(edge.amount / speed))

    def to_graphviz(self) -> graphviz.Digraph:
        """Export the graph with its current positions.

        Precondition:
            none

        Postcondition:
            returns neato Digraph with one pinned node per graph node (y axis flipped,
            positions in inches) and one labelled edge per graph edge
            edge colors carry one black stripe per transport line needed

        Returns:
            graphviz.Digraph
        """
        dot = graphviz.Digraph(engine="neato")
        dot.attr("node", shape="box", style="filled")
        for node_id, node in self.nodes.items():
            cx, cy = self.node_center(node)
            dot.node(
                node_id,
                label=self._node_label(node),
                fillcolor=self._node_color(node.entry),
                pos=f"{cx / POINTS_PER_INCH:.2f},{-cy / POINTS_PER_INCH:.2f}!",
            )
        for edge in self.edges:
            dot.edge(
                edge.source,
                edge.target,
                label=f"{edge.amount:.2f}/min",
                color=_stripe_color(self._edge_lines(edge)),
            )
        return dot
