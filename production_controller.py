"""Controller for production chain planning - no GUI dependencies"""

import json
import logging
import math
from dataclasses import asdict, dataclass, fields

from node_deletion import delete_node_and_dependents
from parsing_utils import parse_item_rate
from production import InvalidInputError, ProductionSession, recalculate, reset_session
from production_graph import FrameScheduler, ManualFrameScheduler
from recipes import Recipe, RecipeCatalog
from summary import ProductionSummary, analyze_production, total_power
from waste import WasteManager

_LOGGER = logging.getLogger("chainplanner")


@dataclass
class DisplaySettings:
    """What the production graph shows and whether it animates"""
    show_raw_materials: bool = True
    show_power: bool = True
    show_alternative_recipes: bool = True
    physics_simulation: bool = True


@dataclass
class ValidationResult:
    """Result of input validation"""
    is_valid: bool
    warnings: list[str]
    errors: list[str]


def save_display_settings(settings: DisplaySettings, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(settings), f, indent=2)


def load_display_settings(path: str) -> DisplaySettings:
    """Load display settings from a JSON file.

    Precondition:
        path is a file path (the file may not exist)

    Postcondition:
        returns settings from the file; unknown keys are ignored, missing keys default
        a missing or unreadable file returns defaults and logs a warning

    Args:
        path: settings file

    Returns:
        DisplaySettings
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        _LOGGER.warning("Could not load display settings from %s: %s", path, exc)
        return DisplaySettings()
    if not isinstance(data, dict):
        _LOGGER.warning("Display settings in %s are not an object, using defaults", path)
        return DisplaySettings()

    known = {f.name for f in fields(DisplaySettings)}
    return DisplaySettings(**{k: bool(v) for k, v in data.items() if k in known})


class ProductionController:
    """Stateful controller for one production chain - single source of truth for its state"""

    def __init__(
        self,
        catalog: RecipeCatalog,
        scheduler: FrameScheduler | None = None,
        display_settings: DisplaySettings | None = None,
        waste_manager: WasteManager | None = None,
    ):
        """Initialize controller with a recipe catalog.

        Precondition:
            catalog is a validated RecipeCatalog

        Postcondition:
            self.session is an empty ProductionSession on catalog
            amount text is "1"
            no calculation is pending, self.last_error is None

        Args:
            catalog: recipe catalog
            scheduler: frame scheduler for deferred calculations and the simulation
            display_settings: initial display settings (defaults if None)
            waste_manager: waste manager (built from the catalog if None)
        """
        self.catalog = catalog
        self.scheduler = scheduler if scheduler is not None else ManualFrameScheduler()
        self.display_settings = display_settings or DisplaySettings()
        self.session = ProductionSession(catalog, waste=waste_manager)

        self._amount_text = "1"
        self._generation = 0
        self.last_error: str | None = None

    # ========== State Getters ==========

    def get_target_item(self) -> str | None:
        return self.session.target_item_id

    def get_amount_text(self) -> str:
        return self._amount_text

    def get_selected_recipes(self) -> dict[str, int]:
        return dict(self.session.selected_recipes)

    def get_default_recipes(self) -> dict[str, int]:
        return dict(self.session.default_recipes)

    def get_generation(self) -> int:
        """Generation of the most recently requested calculation."""
        return self._generation

    def get_recipe_options(self, item_id: str) -> list[Recipe]:
        """Recipes an item can be switched between.

        Empty when alternative recipes are hidden or the item has fewer than two recipes.
        """
        if not self.display_settings.show_alternative_recipes:
            return []
        recipes = self.catalog.find_recipes_for_item(item_id) or []
        return recipes if len(recipes) > 1 else []

    def get_items_with_alternatives(self) -> list[str]:
        """Items a default recipe can be chosen for."""
        if not self.display_settings.show_alternative_recipes:
            return []
        return self.catalog.items_with_alternative_recipes()

    def get_graphviz_source(self) -> str | None:
        """Get graphviz source of the current graph, or None if nothing is calculated."""
        if self.session.graph is None:
            return None
        return self.session.graph.to_graphviz().source

    def get_summary(self) -> ProductionSummary | None:
        if not self.session.needs_map:
            return None
        return analyze_production(self.session, self.display_settings.show_raw_materials)

    def get_total_power(self) -> float | None:
        """Total power of the chain, or None when power display is off or nothing is calculated."""
        if not self.display_settings.show_power or not self.session.needs_map:
            return None
        return total_power(self.session, self.display_settings.show_raw_materials)

    # ========== State Setters ==========

    def set_target_item(self, item_id: str | None):
        """Set target item; recipe selections belong to the previous chain and are cleared."""
        if item_id != self.session.target_item_id:
            self.session.selected_recipes.clear()
        self.session.target_item_id = item_id

    def set_amount_text(self, text: str):
        self._amount_text = text

    def _check_recipe_index(self, item_id: str, index: int) -> None:
        recipes = self.catalog.find_recipes_for_item(item_id) or []
        if not 0 <= index < len(recipes):
            raise ValueError(f"Recipe index {index} out of range for '{item_id}' ({len(recipes)} recipes)")

    def select_recipe(self, item_id: str, index: int):
        """Switch the recipe of an item and recalculate, keeping node positions.

        Precondition:
            index is a valid recipe index for item_id

        Postcondition:
            session selection map records the index
            if a chain is calculated, it is recalculated with positions preserved

        Raises:
            ValueError: if index is out of range, or the recalculation fails
        """
        self._check_recipe_index(item_id, index)
        self.session.selected_recipes[item_id] = index
        _LOGGER.info("Recipe %s selected for '%s'", index, item_id)
        if self.session.needs_map:
            self._recalculate(preserve_positions=True)

    def set_default_recipe(self, item_id: str, index: int):
        """Set the preferred recipe of an item for every chain without an explicit selection.

        Raises:
            ValueError: if index is out of range, or the recalculation fails
        """
        self._check_recipe_index(item_id, index)
        self.session.default_recipes[item_id] = index
        _LOGGER.info("Default recipe for '%s' set to %s", item_id, index)
        if self.session.needs_map:
            self._recalculate(preserve_positions=True)

    def apply_display_settings(self, settings: DisplaySettings):
        """Apply new display settings to the current graph.

        Postcondition:
            changing show_raw_materials rebuilds the graph with positions preserved
            the simulation runs exactly when physics_simulation is on
        """
        previous = self.display_settings
        self.display_settings = settings
        if self.session.graph is None:
            return
        if previous.show_raw_materials != settings.show_raw_materials:
            self._recalculate(preserve_positions=True)

        graph = self.session.graph
        graph.physics_enabled = settings.physics_simulation
        if settings.physics_simulation:
            graph.start_simulation()
        else:
            graph.stop_simulation()

    # ========== Validation and calculation ==========

    def validate(self) -> ValidationResult:
        """Validate target item and amount text.

        Precondition:
            none

        Postcondition:
            returns ValidationResult with is_valid, warnings, errors
            missing or unknown target and a non-positive or non-numeric amount are errors
            a target without recipes is a warning

        Returns:
            ValidationResult with any warnings or errors
        """
        warnings = []
        errors = []

        target = self.session.target_item_id
        if not target:
            errors.append("No target item selected")
        elif not self.catalog.has_item(target):
            errors.append(f"Unknown target item '{target}'")
        elif not self.catalog.find_recipes_for_item(target):
            warnings.append(f"No recipe produces '{target}'; it will be treated as a raw material")

        try:
            amount = float(self._amount_text)
        except (TypeError, ValueError):
            errors.append(f"Invalid amount '{self._amount_text}'. Must be a number.")
        else:
            if not math.isfinite(amount) or amount <= 0:
                errors.append(f"Amount must be a positive number, got '{self._amount_text}'")

        return ValidationResult(is_valid=len(errors) == 0, warnings=warnings, errors=errors)

    def set_target_text(self, text: str):
        """Set target and amount from an "item:rate" string.

        Raises:
            ValueError: if the text is malformed
        """
        item_id, rate = parse_item_rate(text)
        self.set_target_item(item_id)
        self.set_amount_text(str(rate))

    def _recalculate(self, preserve_positions: bool) -> ProductionSession:
        return recalculate(
            self.session,
            preserve_positions=preserve_positions,
            show_raw_materials=self.display_settings.show_raw_materials,
            physics_enabled=self.display_settings.physics_simulation,
            scheduler=self.scheduler,
        )

    def calculate_production(self, preserve_positions: bool = False) -> ProductionSession:
        """Validate the inputs and calculate the chain now.

        Postcondition:
            session holds the calculated chain and graph
            self.last_error is cleared

        Returns:
            the calculated session

        Raises:
            InvalidInputError: if validation fails (nothing is changed)
            ValueError: if the calculation fails (results are cleared)
        """
        validation = self.validate()
        for warning in validation.warnings:
            _LOGGER.warning(warning)
        if not validation.is_valid:
            raise InvalidInputError("; ".join(validation.errors))

        self.session.target_rate = float(self._amount_text)
        self._recalculate(preserve_positions)
        self.last_error = None
        return self.session

    def request_calculation(self, preserve_positions: bool = False) -> int:
        """Schedule a calculation on the next frame, after a loading indicator can paint.

        Every request gets a new generation; when the frame comes, a request that is no
        longer the newest is discarded. Failures of the deferred run are logged and kept
        in self.last_error.

        Returns:
            generation of this request
        """
        self._generation += 1
        generation = self._generation
        self.scheduler.request_frame(lambda: self._run_requested(generation, preserve_positions))
        _LOGGER.debug("Calculation %s requested", generation)
        return generation

    def _run_requested(self, generation: int, preserve_positions: bool):
        if generation != self._generation:
            _LOGGER.warning("Discarding stale calculation %s (current is %s)", generation, self._generation)
            return
        try:
            self.calculate_production(preserve_positions)
        except ValueError as e:
            self.last_error = str(e)
            _LOGGER.error("Calculation %s failed: %s", generation, e)

    # ========== Editing ==========

    def delete_node(self, node_id: str) -> ProductionSession:
        return delete_node_and_dependents(self.session, node_id)

    def reset(self):
        """Clear the chain; pending calculations become stale."""
        self._generation += 1
        reset_session(self.session)
        self.session.selected_recipes.clear()
        self.last_error = None
