"""Linear balance system of a production chain and its exact solver.

Every item in the chain gets one unknown: its total production rate. Row i states that the
rate of item i minus what every consumer of i needs equals the external demand for i, which
is the requested rate for the target and zero everywhere else.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

import numpy as np

from recipes import Recipe

_LOGGER = logging.getLogger("chainplanner")

# Pivots smaller than this mean the system has no unique solution
PIVOT_EPSILON = 1e-9


@dataclass
class LinearSystem:
    """Square system A x = b with the item each column/row stands for."""

    matrix: np.ndarray
    vector: np.ndarray
    item_index_map: dict[str, int]


def _index_items(item_ids: Iterable[str]) -> dict[str, int]:
    """Assign each item a row/column index.

    Precondition:
        item_ids contains unique item ids

    Postcondition:
        returns dict mapping item ids to 0..n-1
        indices follow sorted id order so the same set always yields the same system

    Args:
        item_ids: items of the chain

    Returns:
        dict of item id to index
    """
    return {item_id: index for index, item_id in enumerate(sorted(item_ids))}


def _add_recipe_column(
    matrix: np.ndarray,
    column: int,
    item_id: str,
    recipe: Recipe,
    item_index_map: dict[str, int],
) -> None:
    """Subtract the per-unit ingredient needs of an item's recipe from its column.

    Precondition:
        matrix[column, column] is 1
        recipe is the selected recipe of item_id

    Postcondition:
        for each ingredient in the system, matrix[ingredient, column] is decreased by
        ingredient amount / product amount
        if the recipe yields none of the item, the diagonal is zeroed so the system
        becomes singular instead of dividing by zero

    Args:
        matrix: coefficient matrix being built
        column: index of item_id
        item_id: item produced by the recipe
        recipe: selected recipe for item_id
        item_index_map: item id to index
    """
    product_amount = recipe.product_amount(item_id)
    if product_amount <= 0:
        _LOGGER.warning(
            "Recipe '%s' yields no '%s' per cycle; the chain cannot be balanced",
            recipe.recipe_id,
            item_id,
        )
        matrix[column, column] = 0.0
        return

    for ingredient_id, amount in recipe.ingredients.items():
        # Ingredients outside the discovered chain are not tracked
        if ingredient_id not in item_index_map:
            continue
        matrix[item_index_map[ingredient_id], column] -= amount / product_amount


def build_linear_system(
    item_ids: Iterable[str],
    target_item_id: str,
    target_rate: float,
    recipe_for: Callable[[str], Recipe | None],
) -> LinearSystem:
    """Build the balance matrix and external demand vector for a chain.

    Precondition:
        target_item_id is one of item_ids
        target_rate is a positive finite float
        recipe_for returns the selected recipe of an item, or None for raw items

    Postcondition:
        returns n x n matrix with 1 on the diagonal (except for recipes that yield
        none of their item), minus consumption coefficients off the diagonal
        vector is zero except target_rate at the target's index

    Args:
        item_ids: every item discovered in the chain
        target_item_id: item requested by the user
        target_rate: requested items per minute
        recipe_for: selected-recipe lookup

    Returns:
        LinearSystem ready for solve_linear_system
    """
    item_index_map = _index_items(item_ids)
    n = len(item_index_map)
    _LOGGER.debug("Building %sx%s system for '%s' at %s/min", n, n, target_item_id, target_rate)

    matrix = np.identity(n, dtype=float)
    vector = np.zeros(n, dtype=float)
    vector[item_index_map[target_item_id]] = target_rate

    for item_id, column in item_index_map.items():
        recipe = recipe_for(item_id)
        if recipe is not None:
            _add_recipe_column(matrix, column, item_id, recipe, item_index_map)

    return LinearSystem(matrix, vector, item_index_map)


def solve_linear_system(matrix, vector) -> list[float] | None:
    """Solve A x = b by Gauss-Jordan elimination with partial pivoting.

    Precondition:
        matrix is n x n, vector has length n (arrays or nested lists)

    Postcondition:
        inputs are not modified
        returns x with A x = b when the system has a unique solution
        returns None when a pivot falls below PIVOT_EPSILON or the result is not finite

    Args:
        matrix: coefficient matrix A
        vector: right-hand side b

    Returns:
        solution as a list of floats, or None for singular systems
    """
    b = np.array(vector, dtype=float)
    n = len(b)
    augmented = np.column_stack((np.array(matrix, dtype=float).reshape(n, n), b))

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(augmented[col:, col])))
        if pivot_row != col:
            augmented[[col, pivot_row]] = augmented[[pivot_row, col]]

        pivot = augmented[col, col]
        if abs(pivot) < PIVOT_EPSILON:
            _LOGGER.warning("System is singular at column %s", col)
            return None

        factors = augmented[:, col] / pivot
        factors[col] = 0.0
        augmented -= np.outer(factors, augmented[col])

    # Only the diagonal is left in the coefficient part
    solution = augmented[:, n] / np.diagonal(augmented)
    if not np.all(np.isfinite(solution)):
        _LOGGER.warning("System solution is not finite")
        return None
    return solution.tolist()
