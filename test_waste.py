"""Tests for waste module"""

import json

from pytest import approx, raises

from needs import NeedsEntry
from production import ProductionSession, recalculate
from recipes import catalog_from_dict
from waste import ORPHAN_STRICT, MissingDisposalRouteError, WasteManager


def _recipe(recipe_id, time, ingredients, products):
    return {
        "id": recipe_id,
        "time": time,
        "ingredients": [{"item_id": k, "amount": v} for k, v in ingredients.items()],
        "products": [{"item_id": k, "amount": v} for k, v in products.items()],
    }


def _catalog(disposal=True):
    dump_recipes = [_recipe("dump_slag", 10, {"slag": 1}, {})] if disposal else []
    return catalog_from_dict({
        "items": {"ore": {"name": "Ore"}, "plate": {"name": "Plate"}, "slag": {"name": "Slag"}},
        "buildings": {
            "furnace": {"name": "Furnace", "recipes": [_recipe("smelt", 30, {"ore": 1}, {"plate": 1, "slag": 0.5})]},
            "dump": {"name": "Dump", "recipes": dump_recipes},
        },
        "waste": ["slag"],
    })


def _plate_entry(catalog, level=0):
    return NeedsEntry(
        "plate", 4.0, level=level, all_recipes=catalog.find_recipes_for_item("plate"), machine_count=2.0
    )


def test_waste_items_default_to_catalog():
    """the manager should use the catalog's waste list unless given one"""
    catalog = _catalog()
    assert WasteManager(catalog).is_waste_item("slag")
    assert not WasteManager(catalog).is_waste_item("plate")
    assert WasteManager(catalog, waste_items={"plate"}).is_waste_item("plate")


def test_unknown_orphan_policy():
    """only drop and strict policies should be accepted"""
    with raises(ValueError, match="orphan policy"):
        WasteManager(_catalog(), orphan_policy="ignore")


def test_record_waste_accumulates():
    """waste rates for the same item should add up; non-waste is ignored"""
    manager = WasteManager(_catalog())
    manager.record_waste("slag", 1.5)
    manager.record_waste("slag", 0.5)
    manager.record_waste("plate", 3.0)
    assert manager.discovered_waste == {"slag": 2.0}


def test_process_disposal_creates_node_and_edge():
    """recorded waste should become a disposal node fed by its producer"""
    catalog = _catalog()
    manager = WasteManager(catalog)
    needs_map = {"plate": _plate_entry(catalog), "ore": NeedsEntry("ore", 4.0, level=1, is_raw=True)}
    manager.record_waste("slag", 2.0)

    edges = manager.process_disposal(needs_map)

    disposal = needs_map["disposal_slag"]
    assert disposal.is_waste_disposal
    assert disposal.original_item_id == "slag"
    assert disposal.machine_count == approx(2 / (1 / (10 / 60)))
    assert disposal.level == 2
    assert disposal.selected_recipe.recipe_id == "dump_slag"
    assert disposal.transport_type == "belt"
    assert [(e.source, e.target, e.amount) for e in edges] == [("plate", "disposal_slag", 2.0)]
    assert manager.discovered_waste == {}


def test_process_disposal_without_producer_drops():
    """waste nobody produces should be dropped in the default policy"""
    catalog = _catalog()
    manager = WasteManager(catalog)
    needs_map = {"ore": NeedsEntry("ore", 4.0, is_raw=True)}
    manager.record_waste("slag", 2.0)

    assert manager.process_disposal(needs_map) == []
    assert "disposal_slag" not in needs_map
    assert manager.discovered_waste == {}


def test_process_disposal_without_recipe_drops():
    """waste without a disposal recipe should be dropped in the default policy"""
    catalog = _catalog(disposal=False)
    manager = WasteManager(catalog)
    needs_map = {"plate": _plate_entry(catalog)}
    manager.record_waste("slag", 2.0)

    assert manager.process_disposal(needs_map) == []
    assert list(needs_map) == ["plate"]


def test_strict_policy_raises():
    """strict policy should refuse to drop waste and still clear the accumulator"""
    catalog = _catalog(disposal=False)
    manager = WasteManager(catalog, orphan_policy=ORPHAN_STRICT)
    manager.record_waste("slag", 2.0)

    with raises(MissingDisposalRouteError, match="slag"):
        manager.process_disposal({"plate": _plate_entry(catalog)})
    assert manager.discovered_waste == {}


def test_strict_policy_clears_calculation():
    """a strict failure during recalculation should leave no half-built chain"""
    catalog = _catalog(disposal=False)
    session = ProductionSession(catalog, waste=WasteManager(catalog, orphan_policy=ORPHAN_STRICT))
    session.target_item_id = "plate"
    session.target_rate = 4

    with raises(MissingDisposalRouteError):
        recalculate(session, physics_enabled=False)
    assert session.needs_map == {}
    assert session.graph is None


def test_drop_policy_recalculation_skips_waste():
    """the default policy should calculate the chain without the disposal node"""
    catalog = _catalog(disposal=False)
    session = ProductionSession(catalog)
    session.target_item_id = "plate"
    session.target_rate = 4

    recalculate(session, physics_enabled=False)
    assert set(session.needs_map) == {"plate", "ore"}
    assert session.waste_edges == []


def test_clear():
    """clear should forget recorded waste"""
    manager = WasteManager(_catalog())
    manager.record_waste("slag", 1.0)
    manager.clear()
    assert manager.discovered_waste == {}


def test_load_waste_items(tmp_path):
    """waste items should be replaceable from a JSON list"""
    path = tmp_path / "waste.json"
    path.write_text(json.dumps(["plate"]), encoding="utf-8")
    manager = WasteManager(_catalog())
    manager.load_waste_items(str(path))
    assert manager.is_waste_item("plate")
    assert not manager.is_waste_item("slag")
