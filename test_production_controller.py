"""Tests for production controller"""

import logging

from pytest import approx, raises

from production import InvalidInputError
from production_controller import (
    DisplaySettings,
    ProductionController,
    ValidationResult,
    load_display_settings,
    save_display_settings,
)
from production_graph import ManualFrameScheduler
from recipes import DEFAULT_CATALOG_PATH, catalog_from_dict, load_catalog


def _controller(**kwargs):
    return ProductionController(load_catalog(DEFAULT_CATALOG_PATH), scheduler=ManualFrameScheduler(), **kwargs)


def _calculated(target="iron_plate", amount="4", **kwargs):
    controller = _controller(**kwargs)
    controller.set_target_item(target)
    controller.set_amount_text(amount)
    controller.calculate_production()
    return controller


def test_controller_init():
    """controller should start without a target or results"""
    controller = _controller()
    assert controller.get_target_item() is None
    assert controller.get_amount_text() == "1"
    assert controller.get_graphviz_source() is None
    assert controller.get_summary() is None
    assert controller.display_settings == DisplaySettings()


def test_validate_errors():
    """missing target and bad amounts should be errors"""
    controller = _controller()
    result = controller.validate()
    assert isinstance(result, ValidationResult)
    assert not result.is_valid
    assert "No target item selected" in result.errors

    controller.set_target_item("iron_plate")
    for text in ("abc", "0", "-3", "inf", "nan"):
        controller.set_amount_text(text)
        assert not controller.validate().is_valid

    controller.set_amount_text("4")
    assert controller.validate().is_valid


def test_validate_unknown_target():
    """unknown targets should be rejected"""
    controller = _controller()
    controller.set_target_item("unobtainium")
    result = controller.validate()
    assert any("Unknown target" in e for e in result.errors)


def test_validate_warns_for_raw_target():
    """a target without recipes should only warn"""
    catalog = catalog_from_dict({"items": {"ore": {"name": "Ore"}}, "buildings": {}})
    controller = ProductionController(catalog)
    controller.set_target_item("ore")
    result = controller.validate()
    assert result.is_valid
    assert result.warnings


def test_calculate_production():
    """calculation should fill the session and build a graph"""
    controller = _calculated()
    needs = controller.session.needs_map
    assert needs["iron_plate"].machine_count == approx(2.0)
    assert needs["iron_ore"].rate == approx(8.0)
    assert controller.session.graph is not None
    assert "digraph" in controller.get_graphviz_source()


def test_calculate_invalid_raises():
    """calculating invalid input should raise without touching results"""
    controller = _calculated()
    controller.set_amount_text("nope")
    with raises(InvalidInputError):
        controller.calculate_production()
    assert "iron_plate" in controller.session.needs_map


def test_set_target_text():
    """an item:rate string should set target and amount"""
    controller = _controller()
    controller.set_target_text("iron_gear:2.5")
    assert controller.get_target_item() == "iron_gear"
    assert controller.get_amount_text() == "2.5"


def test_changing_target_clears_selections():
    """recipe selections should not carry over to another target"""
    controller = _controller()
    controller.set_target_item("iron_gear")
    controller.select_recipe("iron_plate", 1)
    controller.set_target_item("iron_gear")
    assert controller.get_selected_recipes() == {"iron_plate": 1}
    controller.set_target_item("wet_gear")
    assert controller.get_selected_recipes() == {}


def test_select_recipe_recalculates():
    """switching a recipe should recalculate, here adding slag disposal"""
    controller = _calculated()
    assert "disposal_slag" not in controller.session.needs_map

    controller.select_recipe("iron_plate", 1)
    needs = controller.session.needs_map
    assert needs["iron_plate"].selected_recipe.recipe_id == "smelt_iron_plate_fast"
    assert needs["disposal_slag"].rate == approx(2.0)
    assert needs["disposal_slag"].machine_count == approx(1 / 3)


def test_select_recipe_keeps_positions():
    """switching a recipe should keep where surviving nodes were"""
    controller = _calculated()
    controller.session.graph.move_node("iron_plate", 700.0, 650.0)
    controller.select_recipe("iron_plate", 1)
    node = controller.session.graph.nodes["iron_plate"]
    assert (node.x, node.y) == (700.0, 650.0)


def test_select_recipe_out_of_range():
    """invalid recipe indices should be rejected"""
    controller = _controller()
    with raises(ValueError, match="out of range"):
        controller.select_recipe("iron_plate", 5)
    with raises(ValueError, match="out of range"):
        controller.select_recipe("iron_ore", 1)


def test_set_default_recipe():
    """a default recipe should apply to items without a selection"""
    controller = _calculated(target="iron_gear", amount="1")
    controller.set_default_recipe("iron_gear", 1)
    assert controller.get_default_recipes() == {"iron_gear": 1}
    gear = controller.session.needs_map["iron_gear"]
    assert gear.selected_recipe.recipe_id == "assemble_iron_gear"
    assert "screw" in controller.session.needs_map


def test_recipe_options():
    """only items with alternatives should offer options, and only when shown"""
    controller = _controller()
    assert [r.recipe_id for r in controller.get_recipe_options("iron_plate")] == [
        "smelt_iron_plate",
        "smelt_iron_plate_fast",
    ]
    assert controller.get_recipe_options("screw") == []

    assert controller.get_items_with_alternatives() == ["iron_plate", "iron_gear"]

    controller.display_settings = DisplaySettings(show_alternative_recipes=False)
    assert controller.get_recipe_options("iron_plate") == []
    assert controller.get_items_with_alternatives() == []


def test_total_power():
    """power should count furnaces and mines, and respect the toggles"""
    controller = _calculated()
    # 2 furnaces at 4, 1 mine at 5
    assert controller.get_total_power() == 13.0

    controller.apply_display_settings(DisplaySettings(show_raw_materials=False))
    assert controller.get_total_power() == 8.0

    controller.apply_display_settings(DisplaySettings(show_power=False))
    assert controller.get_total_power() is None


def test_request_calculation_runs_next_frame():
    """a requested calculation should run on the next frame"""
    controller = _controller()
    controller.set_target_item("iron_plate")
    controller.set_amount_text("4")
    generation = controller.request_calculation()
    assert controller.session.needs_map == {}

    controller.scheduler.run_frames(1)
    assert generation == controller.get_generation()
    assert "iron_plate" in controller.session.needs_map
    assert controller.last_error is None


def test_stale_calculation_discarded(caplog):
    """only the newest of several pending calculations should run"""
    controller = _controller()
    controller.set_target_item("iron_plate")
    controller.set_amount_text("4")
    controller.request_calculation()
    controller.set_amount_text("8")
    controller.request_calculation()

    with caplog.at_level(logging.WARNING, logger="chainplanner"):
        controller.scheduler.run_frames(1)
    assert "stale" in caplog.text
    assert controller.session.needs_map["iron_plate"].rate == approx(8.0)


def test_reset_discards_pending_calculation():
    """reset should make a pending calculation stale"""
    controller = _controller()
    controller.set_target_item("iron_plate")
    controller.request_calculation()
    controller.reset()
    controller.scheduler.run_frames(1)
    assert controller.session.needs_map == {}
    assert controller.get_target_item() is None


def test_failed_requested_calculation_records_error():
    """errors of deferred calculations should be kept for display"""
    controller = _controller()
    controller.set_target_item("unobtainium")
    controller.request_calculation()
    controller.scheduler.run_frames(1)
    assert "Unknown target" in controller.last_error


def test_apply_display_settings_physics():
    """turning physics off and on should stop and start the simulation"""
    controller = _calculated()
    graph = controller.session.graph
    assert graph.is_simulating

    controller.apply_display_settings(DisplaySettings(physics_simulation=False))
    assert not graph.is_simulating
    assert controller.scheduler.pending == 0

    controller.apply_display_settings(DisplaySettings(physics_simulation=True))
    assert graph.is_simulating


def test_apply_display_settings_hide_raw():
    """hiding raw materials should rebuild the graph without them"""
    controller = _calculated()
    assert "iron_ore" in controller.session.graph.nodes
    controller.apply_display_settings(DisplaySettings(show_raw_materials=False))
    assert "iron_ore" not in controller.session.graph.nodes
    assert "iron_ore" in controller.session.needs_map


def test_delete_node():
    """deleting through the controller should edit the session"""
    controller = _calculated(target="iron_gear", amount="2")
    controller.delete_node("iron_gear")
    assert controller.session.needs_map == {}
    assert controller.get_graphviz_source() is None


def test_summary():
    """the summary should describe the calculated chain"""
    summary = _calculated().get_summary()
    assert summary.main_tree.item_id == "iron_plate"
    assert summary.total_power == 13.0


def test_display_settings_round_trip(tmp_path):
    """saved display settings should load back unchanged"""
    path = str(tmp_path / "settings.json")
    settings = DisplaySettings(show_raw_materials=False, physics_simulation=False)
    save_display_settings(settings, path)
    assert load_display_settings(path) == settings


def test_display_settings_missing_or_corrupt(tmp_path):
    """unreadable settings should fall back to defaults"""
    assert load_display_settings(str(tmp_path / "missing.json")) == DisplaySettings()

    path = tmp_path / "corrupt.json"
    path.write_text("{oops", encoding="utf-8")
    assert load_display_settings(str(path)) == DisplaySettings()

    path.write_text("[1, 2]", encoding="utf-8")
    assert load_display_settings(str(path)) == DisplaySettings()


def test_display_settings_ignore_unknown_keys(tmp_path):
    """unknown keys should be ignored and missing keys defaulted"""
    path = tmp_path / "settings.json"
    path.write_text('{"show_power": false, "theme": "dark"}', encoding="utf-8")
    assert load_display_settings(str(path)) == DisplaySettings(show_power=False)
