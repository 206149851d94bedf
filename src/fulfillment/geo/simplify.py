"""Polyline simplification for route display.

Two passes: a radial-distance pre-filter that drops points clustered
around the last kept point, then Douglas-Peucker on what remains. Both
work in squared degree-space so no square roots are taken.
"""

from collections.abc import Sequence

from fulfillment.geo.distance import (
    Coordinates,
    is_valid_coordinate,
    squared_distance,
    squared_segment_distance,
)

DEFAULT_TOLERANCE_DEG = 0.00002


def simplify_radial_distance(
    points: Sequence[Coordinates], sq_tolerance: float
) -> list[Coordinates]:
    """Keep a point only if it lies farther than the tolerance from the last kept point.

    The first and last input points are always kept.
    """
    if len(points) <= 2:
        return list(points)

    kept: list[Coordinates] = [points[0]]
    prev_index = 0

    for i in range(1, len(points)):
        if squared_distance(points[i], points[prev_index]) > sq_tolerance:
            kept.append(points[i])
            prev_index = i

    if prev_index != len(points) - 1:
        kept.append(points[-1])

    return kept


def simplify_douglas_peucker(
    points: Sequence[Coordinates], sq_tolerance: float
) -> list[Coordinates]:
    """Iterative Douglas-Peucker over index intervals.

    Uses an explicit stack rather than recursion so long GPS traces cannot
    exhaust the interpreter stack.
    """
    if len(points) <= 2:
        return list(points)

    last = len(points) - 1
    keep = [False] * len(points)
    keep[0] = keep[last] = True
    stack: list[tuple[int, int]] = [(0, last)]

    while stack:
        start, end = stack.pop()
        max_dist = 0.0
        index = 0

        for i in range(start + 1, end):
            dist = squared_segment_distance(points[i], points[start], points[end])
            if dist > max_dist:
                index = i
                max_dist = dist

        if max_dist > sq_tolerance:
            keep[index] = True
            stack.append((start, index))
            stack.append((index, end))

    return [point for point, kept in zip(points, keep) if kept]


def simplify(
    points: Sequence[Coordinates], tolerance: float = DEFAULT_TOLERANCE_DEG
) -> list[Coordinates]:
    """Reduce a polyline to a visually equivalent sparser one.

    Kept points are the caller's own objects, so the result is an ordered
    subset of the input. Malformed coordinates are dropped first. A
    tolerance of zero (or less) disables simplification entirely.
    """
    cleaned = [p for p in points if is_valid_coordinate(p)]
    if tolerance <= 0 or len(cleaned) <= 2:
        return cleaned

    sq_tolerance = tolerance * tolerance
    radial = simplify_radial_distance(cleaned, sq_tolerance)
    return simplify_douglas_peucker(radial, sq_tolerance)


def pin_endpoints(
    points: Sequence[Coordinates],
    origin: Coordinates,
    destination: Coordinates,
) -> list[Coordinates]:
    """Overwrite the first and last points with the exact marker coordinates.

    Route providers snap endpoints to the road network; the displayed line
    must terminate on the pickup and dropoff markers instead.
    """
    if len(points) < 2:
        return [tuple(origin), tuple(destination)]

    pinned = list(points)
    pinned[0] = tuple(origin)
    pinned[-1] = tuple(destination)
    return pinned
