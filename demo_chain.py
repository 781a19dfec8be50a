"""Demonstration of production chain planning with recipe choices and waste disposal."""

from production_controller import DisplaySettings, ProductionController
from production_graph import ManualFrameScheduler
from recipes import load_catalog
from summary import format_summary

catalog = load_catalog()

# Example 1: Iron plates with the default smelting recipe
print("=" * 60)
print("Example 1: Iron Plate chain")
print("=" * 60)

controller = ProductionController(catalog, scheduler=ManualFrameScheduler())
controller.set_target_text("iron_plate:4")
controller.calculate_production()
controller.scheduler.run_frames(200)

print(format_summary(controller.get_summary()))
print("Rendering chain_iron_plates.png...")
controller.session.graph.to_graphviz().render("chain_iron_plates", format="png", cleanup=True)
print("Done!\n")

# Example 2: Fast smelting leaves slag, which gets a disposal node
print("=" * 60)
print("Example 2: Iron Gears with fast smelting")
print("=" * 60)

controller = ProductionController(
    catalog,
    scheduler=ManualFrameScheduler(),
    display_settings=DisplaySettings(physics_simulation=False),
)
controller.set_target_text("iron_gear:2")
controller.select_recipe("iron_plate", 1)
controller.calculate_production()

print(format_summary(controller.get_summary()))
print("Rendering chain_iron_gears.png...")
controller.session.graph.to_graphviz().render("chain_iron_gears", format="png", cleanup=True)
print("Done!\n")

print("=" * 60)
print("Chain designs complete!")
print("The graphs include:")
print("  - The target node (gold)")
print("  - Production nodes showing rate and machine count")
print("  - Raw materials (light blue) and byproducts (light grey)")
print("  - Waste disposal nodes (salmon)")
print("  - Edges labeled with flow rates, striped by belt count")
print("=" * 60)
