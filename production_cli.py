#!/usr/bin/env python3
"""Command-line interface for production chain planning."""

import argparse
import sys
import logging

from parsing_utils import parse_item_rate, parse_recipe_choices
from production_controller import DisplaySettings, ProductionController
from production_graph import ManualFrameScheduler
from recipes import DEFAULT_CATALOG_PATH, load_catalog
from summary import format_summary


def _calculate(args) -> ProductionController:
    """Load the catalog and calculate the requested chain.

    Precondition:
        args holds parsed CLI arguments

    Postcondition:
        returns controller whose session holds the calculated chain
        the layout simulation has run for args.frames frames

    Args:
        args: parsed CLI arguments

    Returns:
        ProductionController with a calculated chain

    Raises:
        ValueError: if the catalog, target or recipes are invalid, or solving fails
        OSError: if the catalog cannot be read
    """
    catalog = load_catalog(args.catalog)
    scheduler = ManualFrameScheduler()
    settings = DisplaySettings(show_raw_materials=not args.hide_raw, physics_simulation=args.frames > 0)
    controller = ProductionController(catalog, scheduler=scheduler, display_settings=settings)

    item_id, rate = parse_item_rate(args.target)
    controller.set_target_item(item_id)
    controller.set_amount_text(str(rate))
    for choice_item, index in parse_recipe_choices(args.recipes).items():
        controller.select_recipe(choice_item, index)

    print(f"Calculating {item_id} at {rate}/min", file=sys.stderr)
    controller.calculate_production()
    scheduler.run_frames(args.frames)
    controller.session.graph.stop_simulation()
    return controller


def _output_graphviz(graphviz_source: str, output_file: str | None) -> None:
    """Write graphviz source to file or stdout.

    Precondition:
        graphviz_source is a non-empty string
        output_file is either None or a valid file path

    Postcondition:
        graphviz source is written to file or stdout
        success message is printed to stderr if file written

    Args:
        graphviz_source: graphviz source code to output
        output_file: optional file path to write to (None = stdout)
    """
    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(graphviz_source)
        print(f"\nGraphviz written to {output_file}", file=sys.stderr)
    else:
        print("\n" + "=" * 60, file=sys.stderr)
        print(graphviz_source)


def _create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser.

    Returns:
        ArgumentParser instance ready to parse command-line arguments
    """
    parser = argparse.ArgumentParser(
        description="Plan production chains and lay them out as a graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Four plates per minute
  %(prog)s --target "iron_plate:4"

  # Use the second recipe for plates, print a summary
  %(prog)s --target "iron_gear:2" --recipes "iron_plate:1" --summary

  # Without raw materials, written to a file
  %(prog)s --target "iron_gear:2" --hide-raw --output-file gear.dot
        """,
    )

    parser.add_argument(
        "--catalog",
        "-c",
        default=DEFAULT_CATALOG_PATH,
        help="Recipe catalog JSON file (default: catalog.json next to this script)",
    )

    parser.add_argument(
        "--target",
        "-t",
        required=True,
        help='Target item and rate as "Item:Rate"',
    )

    parser.add_argument(
        "--recipes",
        "-r",
        default="",
        help='Recipe choices as "Item:Index, Item:Index, ..." (optional)',
    )

    parser.add_argument(
        "--hide-raw", action="store_true", help="Leave raw materials and waste disposal out of the graph"
    )

    parser.add_argument(
        "--frames",
        type=int,
        default=0,
        help="Layout simulation frames to run before export (default: 0)",
    )

    parser.add_argument("--summary", "-s", action="store_true", help="Print a production summary to stderr")

    parser.add_argument(
        "--output-file", "-f", help="Write graphviz output to file instead of stdout"
    )

    return parser


def main(argv=None):
    """Main CLI function.

    Precondition:
        command-line arguments are available via argv or sys.argv

    Postcondition:
        production chain is calculated and its graph output
        returns 0 on success, 1 on error

    Returns:
        exit code (0=success, 1=error)
    """
    parser = _create_argument_parser()
    args = parser.parse_args(argv)

    # Setup logging to capture controller messages
    logging.basicConfig(level=logging.INFO, format='%(message)s')

    try:
        controller = _calculate(args)

        if args.summary:
            print(format_summary(controller.get_summary()), file=sys.stderr)

        _output_graphviz(controller.get_graphviz_source(), args.output_file)
        return 0

    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
