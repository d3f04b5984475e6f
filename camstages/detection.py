"""Result types shared by the detection and segmentation stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class Rectangle:
    """An axis-aligned rectangle in pixel coordinates."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """Return the intersection with other; empty intersections have zero size."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))


@dataclass
class Detection:
    """An object found in an image: its category, label, confidence and bounding box."""

    category: int
    name: str
    confidence: float
    box: Rectangle

    def __str__(self) -> str:
        b = self.box
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2g}) @ "
            f"{b.x},{b.y} {b.width}x{b.height}"
        )


@dataclass
class Segmentation:
    """A per-pixel category map together with the category labels."""

    width: int
    height: int
    labels: list[str]
    segmentation: Sequence[int]