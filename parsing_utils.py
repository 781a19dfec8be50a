"""Utility functions for parsing item rate and recipe choice specifications."""


def _split_pair(text: str, expected: str) -> tuple[str, str]:
    """Split text on its first colon and trim whitespace from both parts.

    Precondition:
        text is a non-None string

    Postcondition:
        returns (name, value) where both are stripped of whitespace

    Args:
        text: string in format "Name:Value"
        expected: format description used in the error message

    Returns:
        tuple of (name, value_string)

    Raises:
        ValueError: if text does not contain a colon or the name is empty
    """
    if ":" not in text:
        raise ValueError(f"Invalid format: '{text}'. Expected '{expected}'")
    name, value = text.split(":", 1)
    name = name.strip()
    if not name:
        raise ValueError(f"Invalid format: '{text}'. Expected '{expected}'")
    return name, value.strip()


def parse_item_rate(text: str) -> tuple[str, float]:
    """Parse an 'item:rate' string into an (item_id, rate) tuple.

    Precondition:
        text is a non-None string in format "item:rate"

    Postcondition:
        returns (item_id, rate) where item_id is trimmed and rate is a float
        the rate is not range checked

    Args:
        text: String in format "item:rate" (e.g., "plate:4")

    Returns:
        Tuple of (item_id, rate)

    Raises:
        ValueError: If format is invalid or rate is not a number
    """
    item_id, rate_str = _split_pair(text, "Item:Rate")
    try:
        return item_id, float(rate_str)
    except ValueError as exc:
        raise ValueError(f"Invalid rate '{rate_str}' for {item_id}. Must be a number.") from exc


def parse_recipe_choice(text: str) -> tuple[str, int]:
    """Parse an 'item:index' string into an (item_id, recipe_index) tuple.

    Raises:
        ValueError: If format is invalid or the index is not a non-negative integer
    """
    item_id, index_str = _split_pair(text, "Item:Index")
    try:
        index = int(index_str)
    except ValueError as exc:
        raise ValueError(f"Invalid recipe index '{index_str}' for {item_id}. Must be an integer.") from exc
    if index < 0:
        raise ValueError(f"Invalid recipe index '{index_str}' for {item_id}. Must not be negative.")
    return item_id, index


def parse_recipe_choices(text: str) -> dict[str, int]:
    """Parse comma-separated item:index pairs into a dictionary.

    Precondition:
        text is a string (may be empty or whitespace-only)

    Postcondition:
        returns dict mapping item ids to recipe indices
        empty/whitespace text returns empty dict
        duplicate items have the last index win

    Args:
        text: String like "plate:1, gear:0"

    Returns:
        dict of {item_id: recipe_index}

    Raises:
        ValueError: if any pair is malformed
    """
    if not text or not text.strip():
        return {}

    result = {}
    for item in [stripped for item in text.split(",") if (stripped := item.strip())]:
        item_id, index = parse_recipe_choice(item)
        result[item_id] = index
    return result
