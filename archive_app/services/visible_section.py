"""
Which divider is "in view" while the page scrolls. The result anchors
compute_insert_order(); nothing here changes the items.

Clients report divider rectangles relative to the viewport. A divider is a candidate
when it overlaps the viewport shrunk by ROOT_MARGIN on top and bottom.
"""

import logging
from dataclasses import dataclass

from archive_app.models import is_divider
from archive_app.services.sections import sort_items

logger = logging.getLogger(__name__)

# Fraction of the viewport height cut from the top and from the bottom.
ROOT_MARGIN = 0.10
# Ratios at which browsers should report intersection changes.
THRESHOLDS = (0, 0.25, 0.5, 0.75, 1)


@dataclass
class DividerRect:
    divider_id: str
    top: float
    bottom: float


@dataclass
class IntersectionEntry:
    divider_id: str
    is_intersecting: bool
    ratio: float


def intersect(rect: DividerRect, viewport_height: float) -> IntersectionEntry:
    """Intersection of a divider with the margin-reduced viewport."""
    root_top = viewport_height * ROOT_MARGIN
    root_bottom = viewport_height * (1 - ROOT_MARGIN)
    overlap = min(rect.bottom, root_bottom) - max(rect.top, root_top)
    height = rect.bottom - rect.top
    if overlap <= 0:
        return IntersectionEntry(rect.divider_id, False, 0.0)
    ratio = overlap / height if height > 0 else 1.0
    return IntersectionEntry(rect.divider_id, True, min(ratio, 1.0))


class VisibleSectionTracker:
    """
    Per-viewer state: latest intersection ratio of each divider currently intersecting.

    observe() applies a batch of entries and returns the current divider id: the one with
    the greatest ratio (first reported wins ties), or, when none intersects, the last
    divider in display order whose bottom edge is above the viewport midpoint.
    """

    def __init__(self):
        self._ratios: dict[str, float] = {}
        self.current: str | None = None

    def observe(self, entries, items, bottoms=None, viewport_height=0.0) -> str | None:
        self.retain(item.id for item in items if is_divider(item))
        for entry in entries:
            if entry.is_intersecting:
                self._ratios[entry.divider_id] = entry.ratio
            else:
                self._ratios.pop(entry.divider_id, None)

        if self._ratios:
            self.current = self._greatest()
        else:
            self.current = self._last_scrolled_past(items, bottoms or {}, viewport_height)
        logger.debug("visible divider=%s candidates=%d", self.current, len(self._ratios))
        return self.current

    def observe_rects(self, rects, items, viewport_height: float) -> str | None:
        """Convenience for clients that send raw rectangles instead of entries."""
        entries = [intersect(rect, viewport_height) for rect in rects]
        bottoms = {rect.divider_id: rect.bottom for rect in rects}
        return self.observe(entries, items, bottoms, viewport_height)

    def retain(self, divider_ids):
        """Forget dividers that no longer exist. Call whenever the item set changes."""
        divider_ids = set(divider_ids)
        for divider_id in list(self._ratios):
            if divider_id not in divider_ids:
                del self._ratios[divider_id]
        if self.current is not None and self.current not in divider_ids:
            self.current = self._greatest()

    def reset(self):
        self._ratios.clear()
        self.current = None

    def _greatest(self) -> str | None:
        best_id, best_ratio = None, -1.0
        for divider_id, ratio in self._ratios.items():
            if ratio > best_ratio:
                best_id, best_ratio = divider_id, ratio
        return best_id

    @staticmethod
    def _last_scrolled_past(items, bottoms, viewport_height) -> str | None:
        midpoint = viewport_height / 2
        last_above = None
        for item in sort_items(items):
            if not is_divider(item) or item.id not in bottoms:
                continue
            if bottoms[item.id] < midpoint:
                last_above = item.id
        return last_above


def observer_config() -> dict:
    """IntersectionObserver options handed to the page."""
    margin = f"-{int(ROOT_MARGIN * 100)}%"
    return {
        "rootMargin": f"{margin} 0px {margin} 0px",
        "threshold": list(THRESHOLDS),
    }
