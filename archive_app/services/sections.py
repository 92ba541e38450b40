"""
Sections derived from the flat item order, and the insert order for new widgets.

A section is the run of widgets after one divider (or after the start of the list, for
the leading section) up to the next divider. All functions here are pure.
"""

from operator import attrgetter

from archive_app.models import is_divider


def sort_items(items) -> list:
    """
    Items by ascending order. The sort is stable: items sharing an order value keep
    their stored list position.
    """
    return sorted(items, key=attrgetter("order"))


def next_order(items) -> int:
    """max(order) + 1, or 0 for an empty list."""
    if not items:
        return 0
    return max(item.order for item in items) + 1


def derive_sections(items) -> list[dict]:
    """
    Group items into [{"divider": DividerItem | None, "widgets": [...]}, ...].

    A list with k dividers yields k + 1 sections; the first one is the implicit leading
    section (divider None), possibly empty.
    """
    sections = []
    current = {"divider": None, "widgets": []}
    for item in sort_items(items):
        if is_divider(item):
            sections.append(current)
            current = {"divider": item, "widgets": []}
        else:
            current["widgets"].append(item)
    sections.append(current)
    return sections


def sections_to_dict(sections) -> list[dict]:
    return [
        {
            "divider": section["divider"].to_dict() if section["divider"] else None,
            "widgets": [widget.to_dict() for widget in section["widgets"]],
        }
        for section in sections
    ]


def compute_insert_order(items, visible_divider_id=None) -> int:
    """
    Order value a new widget should take so it lands at the end of the section in view:
    the order of the divider that closes that section, or max(order) + 1 when the
    section runs to the end of the list.

    With no divider in view the leading section is meant, which ends at the first
    divider. An unknown visible_divider_id appends at the end.
    """
    ordered = sort_items(items)

    if visible_divider_id is None:
        for item in ordered:
            if is_divider(item):
                return item.order
        return next_order(ordered)

    start = next(
        (index for index, item in enumerate(ordered) if item.id == visible_divider_id),
        None,
    )
    if start is None:
        return next_order(ordered)

    for item in ordered[start + 1:]:
        if is_divider(item):
            return item.order
    return next_order(ordered)


def filter_dividers(items, query="") -> list:
    """Dividers in display order, optionally filtered by a case-insensitive label match."""
    dividers = [item for item in sort_items(items) if is_divider(item)]
    needle = (query or "").strip().lower()
    if not needle:
        return dividers
    return [divider for divider in dividers if needle in (divider.label or "").lower()]


_CYRILLIC = "АБВГДЕЁЖЗИЙКЛМНОПРСТУФХЦЧШЩЪЫЬЭЮЯ"


def _letter_key(letter):
    # Russian collation: symbols, digits, Cyrillic (Ё after Е), then other scripts.
    if letter in _CYRILLIC:
        return (2, _CYRILLIC.index(letter), "")
    if letter.isdigit():
        return (1, 0, letter)
    if letter.isalpha():
        return (3, 0, letter)
    return (0, 0, letter)


def group_dividers(dividers) -> list:
    """
    Group dividers by the upper-cased first letter of their label ("#" when blank).
    Returns [(letter, [divider, ...]), ...] sorted by letter; dividers keep their order.
    """
    groups = {}
    for divider in dividers:
        letter = (divider.label or "").strip()[:1].upper() or "#"
        groups.setdefault(letter, []).append(divider)
    return sorted(groups.items(), key=lambda group: _letter_key(group[0]))
