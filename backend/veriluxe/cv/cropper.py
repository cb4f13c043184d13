"""
Image decode/encode and box cropping helpers.

Pure functions over numpy arrays (BGR, as decoded by OpenCV). No I/O.
"""
from typing import Dict, Sequence

import cv2
import numpy as np


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode an encoded image into a BGR array.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if image is None:
        raise ValueError("Could not decode image payload")
    return image


def encode_png(image: np.ndarray) -> bytes:
    """
    Encode an array as PNG bytes.

    Raises:
        ValueError: If the array is empty or encoding fails
    """
    if image is None or image.size == 0:
        raise ValueError("Cannot encode an empty image")
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("PNG encoding failed")
    return buffer.tobytes()


def crop(image: np.ndarray, box: Sequence[float]) -> np.ndarray:
    """
    Extract the sub-image inside an (x1, y1, x2, y2) box.

    The box is clipped to the image bounds. A box with x2 <= x1 or y2 <= y1
    (or one lying entirely outside the image) yields an empty array; callers
    validate detector boxes before cropping.
    """
    h, w = image.shape[:2]
    x1, y1, x2, y2 = (int(round(v)) for v in box)

    x1, x2 = max(0, x1), min(w, x2)
    y1, y2 = max(0, y1), min(h, y2)

    if x2 <= x1 or y2 <= y1:
        return image[0:0, 0:0]

    return image[y1:y2, x1:x2].copy()


def box_to_coordinates(box: Sequence[float]) -> Dict[str, int]:
    """Convert (x1, y1, x2, y2) to {x, y, width, height}."""
    x1, y1, x2, y2 = (int(round(v)) for v in box)
    return {"x": x1, "y": y1, "width": x2 - x1, "height": y2 - y1}


def image_box(image: np.ndarray) -> tuple:
    """Box covering the whole image."""
    h, w = image.shape[:2]
    return (0.0, 0.0, float(w), float(h))
