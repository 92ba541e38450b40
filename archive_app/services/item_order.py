"""
Helpers for changing item order: making room for an insert and drag-and-drop moves.
"""

import dataclasses

from archive_app.services.sections import sort_items

BEFORE = "before"
AFTER = "after"


def shift_for_insert(items, insert_order: int) -> list | None:
    """
    Make room at insert_order: every item with order >= insert_order moves up by one,
    the others are untouched. Returns the full list sorted by order, or None when no
    item sits at or after insert_order (nothing to shift).
    """
    ordered = sort_items(items)
    if not any(item.order >= insert_order for item in ordered):
        return None
    return [
        dataclasses.replace(item, order=item.order + 1)
        if item.order >= insert_order
        else item
        for item in ordered
    ]


def drop_position(target_top: float, target_height: float, cursor_y: float) -> str:
    """Drop before the target when the cursor is above its vertical midpoint, else after."""
    return BEFORE if cursor_y < target_top + target_height / 2 else AFTER


def reorder_on_drop(items, dragged_id, target_id, position: str) -> list | None:
    """
    Move dragged_id next to target_id and renumber every item with order = index.
    Returns the new list, or None when there is nothing to do (dropped on itself, or an
    id is unknown).
    """
    if position not in (BEFORE, AFTER):
        raise ValueError(f"position must be {BEFORE!r} or {AFTER!r}, got {position!r}")
    if dragged_id == target_id:
        return None

    ordered = sort_items(items)
    ids = [item.id for item in ordered]
    if dragged_id not in ids or target_id not in ids:
        return None
    dragged_index = ids.index(dragged_id)
    target_index = ids.index(target_id)

    dragged = ordered.pop(dragged_index)
    insert_index = target_index
    if dragged_index < target_index:
        insert_index -= 1
    if position == AFTER:
        insert_index += 1
    ordered.insert(insert_index, dragged)

    return renumber(ordered)


def renumber(items) -> list:
    """Assign contiguous orders 0..n-1 following the given sequence."""
    return [
        item if item.order == index else dataclasses.replace(item, order=index)
        for index, item in enumerate(items)
    ]
