from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .config import SETTINGS, Settings
from .errors import InvalidPayload
from .geometry import FiducialCorners, distortion
from .models import FiducialPayload

PAYLOAD_DELIMITER = "|"

Color = Tuple[int, int, int]

# BGR
NEUTRAL_COLOR: Color = (255, 255, 255)
FAILURE_COLOR: Color = (68, 68, 239)
SUCCESS_COLOR: Color = (128, 222, 74)


def encode_payload(payload: FiducialPayload) -> str:
    fields = (payload.evaluation_id, payload.student_id, payload.row_label)
    for value in fields:
        if not value:
            raise ValueError("payload_field_empty")
        if PAYLOAD_DELIMITER in value:
            raise ValueError("payload_field_contains_delimiter")
    return PAYLOAD_DELIMITER.join(fields)


def decode_payload(raw: str) -> FiducialPayload:
    parts = raw.split(PAYLOAD_DELIMITER)
    if len(parts) != 3 or not all(parts):
        raise InvalidPayload(raw)
    evaluation_id, student_id, row_label = parts
    return FiducialPayload(evaluation_id=evaluation_id, student_id=student_id, row_label=row_label)


@dataclass(frozen=True)
class FiducialDetection:
    text: str
    corners: FiducialCorners


def detect_fiducial(
    image: np.ndarray, detector: Optional[cv2.QRCodeDetector] = None
) -> Optional[FiducialDetection]:
    """Decode the QR fiducial in ``image``. None when nothing decodes."""
    detector = detector or cv2.QRCodeDetector()
    try:
        text, points, _ = detector.detectAndDecode(image)
    except cv2.error as exc:
        print(f"[OMR-Scanner] QR decode failed: {exc}")
        return None
    if not text or points is None:
        return None
    points = np.asarray(points, dtype="float32").reshape(-1, 2)
    if points.shape[0] != 4:
        return None
    return FiducialDetection(text=text, corners=FiducialCorners.from_points(points.tolist()))


@dataclass(frozen=True)
class AlignmentWindow:
    target_x: float = 0.95
    target_y: float = 0.05
    tolerance: float = 0.05
    max_distortion: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> "AlignmentWindow":
        return cls(
            target_x=settings.align_target_x,
            target_y=settings.align_target_y,
            tolerance=settings.align_tolerance,
            max_distortion=settings.max_distortion,
        )


@dataclass(frozen=True)
class AlignmentVerdict:
    aligned: bool
    dx: float
    dy: float
    distortion: float


def alignment_verdict(
    corners: FiducialCorners, frame_width: int, frame_height: int, window: AlignmentWindow
) -> AlignmentVerdict:
    """
    Aligned when the QR's top-left corner sits within the tolerance box around
    the on-frame target and the code is seen roughly head-on.
    """
    target_x = frame_width * window.target_x
    target_y = frame_height * window.target_y
    tolerance = min(frame_width, frame_height) * window.tolerance
    dx = corners.top_left[0] - target_x
    dy = corners.top_left[1] - target_y
    skew = distortion(corners)
    aligned = abs(dx) < tolerance and abs(dy) < tolerance and skew < window.max_distortion
    return AlignmentVerdict(aligned=aligned, dx=dx, dy=dy, distortion=skew)


def guide_color(verdict: Optional[AlignmentVerdict]) -> Color:
    if verdict is None:
        return NEUTRAL_COLOR
    return SUCCESS_COLOR if verdict.aligned else FAILURE_COLOR


def draw_guides(frame: np.ndarray, color: Color) -> np.ndarray:
    """Copy of ``frame`` with eight alignment guides at the sheet's edges."""
    overlay = frame.copy()
    height, width = overlay.shape[:2]
    margin_x = width * 0.05
    margin_y = height * 0.05
    size = min(width, height) * 0.05
    mid_x = width / 2
    mid_y = height / 2

    def line(p1, p2):
        cv2.line(
            overlay,
            (int(round(p1[0])), int(round(p1[1]))),
            (int(round(p2[0])), int(round(p2[1]))),
            color,
            4,
        )

    left, right = margin_x, width - margin_x
    top, bottom = margin_y, height - margin_y

    # Corner L-shapes
    for x, y, sx, sy in (
        (left, top, 1, 1),
        (right, top, -1, 1),
        (left, bottom, 1, -1),
        (right, bottom, -1, -1),
    ):
        line((x + sx * size, y), (x, y))
        line((x, y), (x, y + sy * size))

    # Edge ticks
    line((mid_x - size / 2, top), (mid_x + size / 2, top))
    line((mid_x - size / 2, bottom), (mid_x + size / 2, bottom))
    line((left, mid_y - size / 2), (left, mid_y + size / 2))
    line((right, mid_y - size / 2), (right, mid_y + size / 2))
    return overlay
