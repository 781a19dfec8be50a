"""Result data model of a production calculation: the needs map entries and flow edges."""

from dataclasses import dataclass, field

from recipes import Recipe

# Ids of synthesized waste disposal nodes are this prefix plus the waste item id
DISPOSAL_PREFIX = "disposal_"

DEFAULT_TRANSPORT_TYPE = "item_log_belt_01"


@dataclass
class NeedsEntry:
    """One item taking part in a production chain, keyed by item_id in the needs map."""

    item_id: str
    rate: float
    level: int = 0
    is_raw: bool = False
    is_target: bool = False
    is_byproduct: bool = False
    is_waste_disposal: bool = False
    original_item_id: str | None = None
    all_recipes: list[Recipe] = field(default_factory=list)
    selected_recipe_index: int = 0
    machine_count: float = 0.0
    transport_type: str = DEFAULT_TRANSPORT_TYPE
    transport_count: float = 0.0

    @property
    def selected_recipe(self) -> Recipe | None:
        """The recipe this entry is produced (or disposed) by, or None."""
        if 0 <= self.selected_recipe_index < len(self.all_recipes):
            return self.all_recipes[self.selected_recipe_index]
        return None


@dataclass(frozen=True)
class Edge:
    """A directed flow: ingredient to consumer, or producer to disposal node."""

    source: str
    target: str
    amount: float


def disposal_node_id(waste_item_id: str) -> str:
    return f"{DISPOSAL_PREFIX}{waste_item_id}"


def max_level(needs_map: dict[str, NeedsEntry]) -> int:
    """Deepest level present in a needs map (0 when empty)."""
    return max((entry.level for entry in needs_map.values()), default=0)
