import logging
from typing import Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes) -> Optional[np.ndarray]:
    """Decode encoded image bytes to a BGR array, or None if undecodable."""
    nparr = np.frombuffer(image_bytes, np.uint8)
    if nparr.size == 0:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)


class FaceCropper:
    """
    Cut padded face crops out of a photo for indexing.

    Boxes are normalized (0-1). Padding is a fraction of the box size added
    on every side, then clipped to the image.
    """

    def __init__(self, padding: float = 0.4, min_size: int = 20, jpeg_quality: int = 85):
        self.padding = padding
        self.min_size = min_size
        self.jpeg_quality = jpeg_quality

    def pixel_region(
        self,
        box: dict,
        img_width: int,
        img_height: int
    ) -> Optional[Tuple[int, int, int, int]]:
        """
        Padded pixel region (left, top, right, bottom), or None when the
        clipped region is smaller than `min_size` on either side.
        """
        pad_w = box["width"] * self.padding
        pad_h = box["height"] * self.padding

        left = max(0, round((box["x"] - pad_w) * img_width))
        top = max(0, round((box["y"] - pad_h) * img_height))
        right = min(img_width, round((box["x"] + box["width"] + pad_w) * img_width))
        bottom = min(img_height, round((box["y"] + box["height"] + pad_h) * img_height))

        if right - left < self.min_size or bottom - top < self.min_size:
            return None
        return left, top, right, bottom

    def crop(self, image: np.ndarray, box: dict) -> Optional[bytes]:
        """
        Crop one face and encode it as JPEG.

        Args:
            image: Decoded BGR image
            box: Normalized bounding box with x, y, width, height

        Returns:
            JPEG bytes, or None if the region is too small or encoding failed
        """
        img_height, img_width = image.shape[:2]
        region = self.pixel_region(box, img_width, img_height)
        if region is None:
            return None

        left, top, right, bottom = region
        face = image[top:bottom, left:right]
        success, buffer = cv2.imencode('.jpg', face, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not success:
            logger.warning("Failed to encode face crop")
            return None
        return buffer.tobytes()
