"""
Image processing utility functions.
"""
import cv2
import numpy as np


def bytes_to_numpy_array(image_bytes: bytes, flags: int = cv2.IMREAD_COLOR) -> np.ndarray:
    """Convert image bytes to a numpy array.

    Args:
        image_bytes: Raw image bytes
        flags: OpenCV imread flags (default: COLOR)

    Returns:
        numpy.ndarray: Image as a numpy array

    Raises:
        ValueError: If the image cannot be decoded
    """
    if not image_bytes:
        raise ValueError("Image bytes are empty")

    np_array = np.frombuffer(image_bytes, np.uint8)
    try:
        img = cv2.imdecode(np_array, flags)
    except cv2.error as e:
        raise ValueError(f"Failed to decode image bytes: {str(e)}")

    if img is None:
        raise ValueError("Failed to decode image bytes")

    return img


def numpy_array_to_png_bytes(image: np.ndarray) -> bytes:
    """Encode an image array as lossless PNG bytes.

    Raises:
        ValueError: If the image cannot be encoded
    """
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("Failed to encode image as PNG")
    return buffer.tobytes()


def crop_and_resize(image: np.ndarray, box: np.ndarray, size: int) -> np.ndarray:
    """Crop a pixel bounding box ``[x1, y1, x2, y2]`` and resize it to ``size`` x ``size``.

    The box is clipped to the image bounds first.

    Raises:
        ValueError: If the clipped box is empty
    """
    height, width = image.shape[:2]
    x1, y1, x2, y2 = box.astype(int)
    x1, x2 = max(0, x1), min(width, x2)
    y1, y2 = max(0, y1), min(height, y2)
    if x2 <= x1 or y2 <= y1:
        raise ValueError("Bounding box lies outside the image")

    crop = image[y1:y2, x1:x2]
    return cv2.resize(crop, (size, size), interpolation=cv2.INTER_AREA)
