from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple
import math

from .models import Bubble, BubbleGrid, ExamVersion, VersionItem

Point = Tuple[float, float]


# ═══════════════════════════════════════════════════════════════════════════════
# SHEET GEOMETRY CONTRACT
# Every distance is a multiple of the printed QR side ("fiducial size"), so the
# same numbers hold at any camera distance. The renderer prints bubbles at
# these positions and the scanner samples them; change both or neither.
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SheetGeometry:
    bubble_radius: float = 0.10
    row_spacing: float = 0.35
    slot_spacing: float = 0.35
    # Grid origin relative to the fiducial's bottom-left corner.
    origin_dx: float = -1.2
    origin_dy: float = 2.8
    columns: int = 3
    column_spacing: float = 3.2
    # Must equal the most alternatives ever printed for one question.
    max_alternatives: int = 4

    def questions_per_column(self, total_questions: int) -> int:
        return max(1, math.ceil(total_questions / self.columns))

    def offset(self, number: int, slot: int, total_questions: int) -> Point:
        """Bubble center for question ``number`` (1-based), in fiducial units."""
        per_column = self.questions_per_column(total_questions)
        column = (number - 1) // per_column
        row = (number - 1) % per_column
        dx = self.origin_dx + column * self.column_spacing + slot * self.slot_spacing
        dy = self.origin_dy + row * self.row_spacing
        return dx, dy

    def sampled_slots(self, entry: VersionItem) -> int:
        if entry.item.kind != "multiple_choice":
            return 0
        return min(len(entry.alternatives), self.max_alternatives)


@dataclass(frozen=True)
class FiducialCorners:
    top_left: Point
    top_right: Point
    bottom_right: Point
    bottom_left: Point

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> "FiducialCorners":
        """Build from 4 points ordered TL, TR, BR, BL (OpenCV QR detector order)."""
        if len(points) != 4:
            raise ValueError("fiducial_needs_four_corners")
        tl, tr, br, bl = [(float(p[0]), float(p[1])) for p in points]
        return cls(top_left=tl, top_right=tr, bottom_right=br, bottom_left=bl)

    def to_list(self) -> List[List[float]]:
        return [list(self.top_left), list(self.top_right), list(self.bottom_right), list(self.bottom_left)]


def fiducial_size(corners: FiducialCorners) -> float:
    width = corners.top_right[0] - corners.top_left[0]
    height = corners.bottom_left[1] - corners.top_left[1]
    return max(width, height)


def distortion(corners: FiducialCorners) -> float:
    """
    Perspective skew of the fiducial: 0 for a square seen head-on. Sum of the
    relative mismatch between opposite sides.
    """
    width_top = math.dist(corners.top_left, corners.top_right)
    width_bottom = math.dist(corners.bottom_left, corners.bottom_right)
    height_left = math.dist(corners.top_left, corners.bottom_left)
    height_right = math.dist(corners.top_right, corners.bottom_right)
    if width_bottom <= 0 or height_right <= 0:
        return math.inf
    return abs(1 - width_top / width_bottom) + abs(1 - height_left / height_right)


def locate_bubbles(
    corners: FiducialCorners,
    version: ExamVersion,
    geometry: SheetGeometry,
) -> BubbleGrid:
    """
    Project the expected bubble centers for ``version`` onto the frame.
    Only multiple-choice questions get bubbles; every question still takes
    its numbered place in the column layout.
    """
    size = fiducial_size(corners)
    if size <= 0:
        raise ValueError("invalid_fiducial_geometry")

    origin_x, origin_y = corners.bottom_left
    total = len(version.items)
    radius = size * geometry.bubble_radius
    bubbles: List[Bubble] = []
    for entry in version.items:
        for slot in range(geometry.sampled_slots(entry)):
            dx, dy = geometry.offset(entry.number, slot, total)
            bubbles.append(
                Bubble(
                    question_number=entry.number,
                    item_id=entry.item.id,
                    slot=slot,
                    x=origin_x + dx * size,
                    y=origin_y + dy * size,
                    radius=radius,
                )
            )
    return BubbleGrid(fiducial_size=size, bubbles=tuple(bubbles))


def render_layout(version: ExamVersion, geometry: SheetGeometry) -> List[Dict[str, Any]]:
    """
    Bubble placement for the sheet renderer, in fiducial units relative to the
    QR's bottom-left corner.
    """
    total = len(version.items)
    layout: List[Dict[str, Any]] = []
    for entry in version.items:
        bubbles = []
        for slot in range(geometry.sampled_slots(entry)):
            dx, dy = geometry.offset(entry.number, slot, total)
            bubbles.append({"slot": slot, "dx": round(dx, 4), "dy": round(dy, 4)})
        layout.append(
            {
                "number": entry.number,
                "itemId": entry.item.id,
                "kind": entry.item.kind,
                "radius": geometry.bubble_radius,
                "bubbles": bubbles,
            }
        )
    return layout
