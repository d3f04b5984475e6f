"""Piecewise linear functions."""

from __future__ import annotations

import enum
import math
import sys
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, TextIO, Union

DEFAULT_EPS = 1e-6


@dataclass
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2D point, also used as a vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.len2())


class PerpType(enum.Enum):
    """Kind of closest point found by Pwl.invert."""

    NOT_FOUND = "not_found"
    START = "start"
    END = "end"
    VERTEX = "vertex"
    PERPENDICULAR = "perpendicular"


PointLike = Union[Point, Sequence[float]]


def _as_point(p: PointLike) -> Point:
    if isinstance(p, Point):
        return p
    x, y = p
    return Point(float(x), float(y))


class Pwl:
    """A piecewise linear function defined by control points in increasing x."""

    def __init__(self, points: Iterable[PointLike] | None = None) -> None:
        self._points: list[Point] = [_as_point(p) for p in (points or ())]

    @classmethod
    def from_flat(cls, values: Iterable[float]) -> Pwl:
        """Build from a flat sequence x0, y0, x1, y1, ... with strictly increasing x."""
        flat = [float(v) for v in values]
        if len(flat) % 2:
            raise ValueError("Pwl: odd number of values, expected x/y pairs")
        pwl = cls()
        for x, y in zip(flat[::2], flat[1::2]):
            if pwl._points and not x > pwl._points[-1].x:
                raise ValueError("Pwl: x values must be strictly increasing")
            pwl._points.append(Point(x, y))
        if len(pwl._points) < 2:
            raise ValueError("Pwl: at least two points are required")
        return pwl

    @property
    def points(self) -> tuple[Point, ...]:
        return tuple(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self):
        return iter(self._points)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pwl):
            return NotImplemented
        return self._points == other._points

    def __repr__(self) -> str:
        inner = ", ".join(f"({p.x:g}, {p.y:g})" for p in self._points)
        return f"Pwl([{inner}])"

    def append(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self._points or self._points[-1].x + eps < x:
            self._points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self._points or self._points[0].x - eps > x:
            self._points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        return Interval(self._points[0].x, self._points[-1].x)

    def range(self) -> Interval:
        ys = [p.y for p in self._points]
        return Interval(min(ys), max(ys))

    def is_empty(self) -> bool:
        return not self._points

    def _find_span(self, x: float, span: int) -> int:
        last_span = len(self._points) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= self._points[span + 1].x:
            span += 1
        while span and x < self._points[span].x:
            span -= 1
        return span

    def eval_span(self, x: float, span: int = -1) -> tuple[float, int]:
        """Evaluate at x from a span guess (-1 for none); return the value and the span used."""
        if len(self._points) < 2:
            raise ValueError("Pwl: at least two points are needed to evaluate")
        guess = span if span != -1 else len(self._points) // 2 - 1
        span = self._find_span(x, guess)
        p0, p1 = self._points[span], self._points[span + 1]
        return p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x), span

    def eval(self, x: float) -> float:
        return self.eval_span(x)[0]

    def __call__(self, x: float) -> float:
        return self.eval(x)

    def invert(
        self, xy: Point, span: int = -1, eps: float = DEFAULT_EPS
    ) -> tuple[PerpType, Point | None, int]:
        """Find the closest point to xy, searching from span + 1.

        Returns the kind of point found, the point (None when not found) and the span
        reached, which can be passed back in to look for further candidates.
        """
        if span < -1:
            raise ValueError("Pwl: span must be at least -1")
        pts = self._points
        prev_off_end = False
        span += 1
        while span < len(pts) - 1:
            span_vec = pts[span + 1] - pts[span]
            t = (xy - pts[span]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if span == 0:
                    return PerpType.START, pts[span], span
                if prev_off_end:
                    return PerpType.VERTEX, pts[span], span
            elif t > 1 + eps:
                if span == len(pts) - 2:
                    return PerpType.END, pts[span + 1], span
                prev_off_end = True
            else:
                return PerpType.PERPENDICULAR, pts[span] + span_vec * t, span
            span += 1
        return PerpType.NOT_FOUND, None, span

    def compose(self, other: Pwl, eps: float = DEFAULT_EPS) -> Pwl:
        """Return the function that applies this Pwl first and other after."""
        pts, opts = self._points, other._points
        this_x, this_y = pts[0].x, pts[0].y
        this_span = 0
        other_span = other._find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval_span(this_y, other_span)[0])])
        while this_span != len(pts) - 1:
            dx = pts[this_span + 1].x - pts[this_span].x
            dy = pts[this_span + 1].y - pts[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(opts)
                and pts[this_span + 1].y >= opts[other_span + 1].x + eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span += 1
                this_y = opts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and pts[this_span + 1].y <= opts[other_span - 1].x - eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span -= 1
                this_y = opts[other_span].x
            else:
                this_span += 1
                this_x, this_y = pts[this_span].x, pts[this_span].y
            result.append(this_x, other.eval_span(this_y, other_span)[0], eps)
        return result

    def map(self, f: Callable[[float, float], None]) -> None:
        """Call f(x, y) at every control point."""
        for p in self._points:
            f(p.x, p.y)

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl, f: Callable[[float, float, float], None]) -> None:
        """Call f(x, y0, y1) wherever either Pwl has a control point."""
        p0, p1 = pwl0._points, pwl1._points
        span0 = span1 = 0
        x = min(p0[0].x, p1[0].x)
        f(x, pwl0.eval_span(x, span0)[0], pwl1.eval_span(x, span1)[0])
        while span0 < len(p0) - 1 or span1 < len(p1) - 1:
            if span0 == len(p0) - 1:
                span1 += 1
                x = p1[span1].x
            elif span1 == len(p1) - 1:
                span0 += 1
                x = p0[span0].x
            elif p0[span0 + 1].x > p1[span1 + 1].x:
                span1 += 1
                x = p1[span1].x
            else:
                span0 += 1
                x = p0[span0].x
            f(x, pwl0.eval_span(x, span0)[0], pwl1.eval_span(x, span1)[0])

    @staticmethod
    def combine(
        pwl0: Pwl,
        pwl1: Pwl,
        f: Callable[[float, float, float], float],
        eps: float = DEFAULT_EPS,
    ) -> Pwl:
        """Build a Pwl whose y values are f(x, y0, y1) at the knots of either input."""
        result = Pwl()
        Pwl.map2(pwl0, pwl1, lambda x, y0, y1: result.append(x, f(x, y0, y1), eps))
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = DEFAULT_EPS) -> None:
        """Extend to cover at least the given domain, either flat (clip) or linearly."""
        y = self.eval(self._points[0].x if clip else domain.start)
        self.prepend(domain.start, y, eps)
        y = self.eval(self._points[-1].x if clip else domain.end)
        self.append(domain.end, y, eps)

    def generate_lut(self, kind: Callable[[float], object] = float) -> list:
        """Evaluate at every integer from 0 up to the end of the domain."""
        end = int(self.domain().end + 1)
        span = 0
        lut = []
        for x in range(end):
            value, span = self.eval_span(x, span)
            lut.append(kind(value))
        return lut

    def scale(self, factor: float) -> Pwl:
        """Multiply every y value by factor, in place."""
        self._points = [Point(p.x, p.y * factor) for p in self._points]
        return self

    def __imul__(self, factor: float) -> Pwl:
        return self.scale(factor)

    def debug(self, file: TextIO | None = None) -> None:
        out = file if file is not None else sys.stderr
        out.write("Pwl {\n")
        for p in self._points:
            out.write(f"\t({p.x:g}, {p.y:g})\n")
        out.write("}\n")