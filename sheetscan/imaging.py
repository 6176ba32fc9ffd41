from __future__ import annotations

import cv2
import numpy as np

# Phone photos are downscaled before QR search and sampling; geometry is
# relative to the QR, so the scale does not matter as long as both use the
# same image.
MAX_WIDTH = 2000


def decode_image(image_bytes: bytes) -> np.ndarray:
    # IMREAD_COLOR already honours the EXIF orientation tag.
    buffer = np.frombuffer(image_bytes, np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("invalid_image_data")
    return image


def resize_to_width(image: np.ndarray, target_width: int = MAX_WIDTH) -> np.ndarray:
    height, width = image.shape[:2]
    if width == 0 or width <= target_width:
        return image
    scale = target_width / float(width)
    target_height = max(1, int(height * scale))
    print(f"[OMR-Scanner] Resized {width}x{height} -> {target_width}x{target_height}")
    return cv2.resize(image, (target_width, target_height), interpolation=cv2.INTER_AREA)
