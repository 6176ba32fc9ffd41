from __future__ import annotations

from typing import Dict, List

import base64
import math

import cv2
import numpy as np

from .models import BubbleGrid, MarkReading

WHITE = 255.0

# ITU-R BT.601 luma weights in OpenCV's BGR channel order.
_LUMA_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float32)


def to_luminance(image: np.ndarray) -> np.ndarray:
    """Float luminance plane from a gray, BGR or BGRA frame."""
    if image.ndim == 2:
        return image.astype(np.float32)
    if image.ndim == 3 and image.shape[2] >= 3:
        return image[:, :, :3].astype(np.float32) @ _LUMA_BGR
    raise ValueError("unsupported_image_shape")


def bubble_brightness(luma: np.ndarray, cx: float, cy: float, radius: float) -> float:
    """
    Mean luminance over the disk of ``radius`` around (cx, cy), clipped to the
    frame. Lower is darker; a disk entirely off-frame reads as white.
    """
    height, width = luma.shape[:2]
    x0 = max(0, int(math.floor(cx - radius)))
    y0 = max(0, int(math.floor(cy - radius)))
    x1 = min(width, int(math.ceil(cx + radius)) + 1)
    y1 = min(height, int(math.ceil(cy + radius)) + 1)
    if x0 >= x1 or y0 >= y1:
        return WHITE

    roi = np.ascontiguousarray(luma[y0:y1, x0:x1])
    mask = np.zeros(roi.shape[:2], dtype=np.uint8)
    center = (int(round(cx)) - x0, int(round(cy)) - y0)
    cv2.circle(mask, center, max(1, int(round(radius))), 255, -1)
    if not mask.any():
        return WHITE
    return float(cv2.mean(roi, mask=mask)[0])


def detect_marks(luma: np.ndarray, grid: BubbleGrid, threshold: float) -> List[MarkReading]:
    """
    One reading per sampled question. The darkest slot is the candidate and
    only counts if it is below ``threshold``; otherwise the question reads as
    unanswered (slot -1).
    """
    samples: Dict[str, List[float]] = {}
    numbers: Dict[str, int] = {}
    for bubble in grid.bubbles:
        samples.setdefault(bubble.item_id, []).append(
            bubble_brightness(luma, bubble.x, bubble.y, bubble.radius)
        )
        numbers[bubble.item_id] = bubble.question_number

    readings: List[MarkReading] = []
    for item_id, values in samples.items():
        darkest = int(np.argmin(values))
        brightness = values[darkest]
        slot = darkest if brightness < threshold else -1
        readings.append(
            MarkReading(
                item_id=item_id,
                question_number=numbers[item_id],
                slot=slot,
                brightness=brightness,
                samples=tuple(values),
            )
        )
    return readings


def debug_overlay(image: np.ndarray, grid: BubbleGrid, readings: List[MarkReading]) -> str:
    """JPEG (base64) of the frame with every sampled disk and the accepted marks."""
    if image.ndim == 2:
        overlay = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        overlay = image[:, :, :3].copy()

    chosen = {(reading.item_id, reading.slot) for reading in readings if reading.answered}
    for bubble in grid.bubbles:
        center = (int(round(bubble.x)), int(round(bubble.y)))
        radius = max(1, int(round(bubble.radius)))
        if (bubble.item_id, bubble.slot) in chosen:
            cv2.circle(overlay, center, radius + 2, (0, 255, 0), 2)
        else:
            cv2.circle(overlay, center, radius, (0, 0, 255), 1)

    _, encoded = cv2.imencode(".jpg", overlay, [int(cv2.IMWRITE_JPEG_QUALITY), 75])
    return base64.b64encode(encoded.tobytes()).decode("ascii")
