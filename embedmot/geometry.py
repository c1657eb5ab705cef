"""Axis-aligned integer rectangles and the overlap measure used for matching."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Rect:
    """An axis-aligned rectangle with integer top-left corner and size."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        """Return width times height."""
        return self.width * self.height

    def is_empty(self) -> bool:
        """Return True when the rectangle has no positive extent."""
        return self.width <= 0 or self.height <= 0

    def intersection(self, other: Rect) -> Rect:
        """Return the overlap of two rectangles, or an empty Rect()."""
        if self.is_empty() or other.is_empty():
            return Rect()
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x + self.width, other.x + other.width)
        y2 = min(self.y + self.height, other.y + other.height)
        if x2 <= x1 or y2 <= y1:
            return Rect()
        return Rect(x1, y1, x2 - x1, y2 - y1)

    def __and__(self, other: Rect) -> Rect:
        return self.intersection(other)

    def center(self) -> tuple[float, float]:
        """Return the centre point as floats."""
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)


def iou(bbox_a: Rect, bbox_b: Rect) -> float:
    """Intersection over union of two rectangles, in the range 0.0 to 1.0."""
    inter_area = bbox_a.intersection(bbox_b).area()
    union = bbox_a.area() + bbox_b.area() - inter_area
    if union <= 0:
        return 0.0
    return inter_area / union