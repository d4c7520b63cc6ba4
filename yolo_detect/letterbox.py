from typing import Tuple

import cv2
import numpy as np

from .geometry import LetterboxParams, letterbox_params


def letterbox(
    image: np.ndarray,
    target_size: int = 416,
    color: Tuple[int, int, int] = (0, 0, 0),
    interpolation: int = cv2.INTER_LINEAR,
) -> Tuple[np.ndarray, LetterboxParams]:
    """
    Resize keeping aspect ratio, then center on a black `target_size` square.

    Returns:
        padded: (target_size, target_size, C) image, same dtype as input
        params: scale, resized size and left/top padding that were applied
    """

    h, w = image.shape[:2]
    params = letterbox_params(w, h, target_size)

    if (w, h) != (params.new_width, params.new_height):
        image = cv2.resize(image, (params.new_width, params.new_height), interpolation=interpolation)

    padded = cv2.copyMakeBorder(
        image,
        params.pad_y,
        params.pad_bottom,
        params.pad_x,
        params.pad_right,
        cv2.BORDER_CONSTANT,
        value=color,
    )
    return padded, params
