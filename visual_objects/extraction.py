"""
Feature-set extraction from images with ORB.

Turns an image into a feature set of ByteFeature points: keypoint
positions relative to the image size, the keypoint angle and size, and
the 32-byte ORB descriptor. The set's DimensionObjectKey records the
image size so sliding windows can be given in pixels.

ORB detector settings come from the environment:
    ORB_N_FEATURES       maximum number of keypoints (default 500)
    ORB_FAST_THRESHOLD   FAST corner threshold (default 20)
    ORB_EDGE_THRESHOLD   border without features, in pixels (default 20)
"""

import os
import cv2
import numpy as np
import logging
from typing import Optional, Tuple

from .feature_sets import FeatureSet, NeedlemanWunschFeatureSet
from .features import ByteFeature
from .keys import DimensionObjectKey

logger = logging.getLogger(__name__)

DEFAULT_N_FEATURES = int(os.environ.get("ORB_N_FEATURES", "500"))
FAST_THRESHOLD = int(os.environ.get("ORB_FAST_THRESHOLD", "20"))
EDGE_THRESHOLD = int(os.environ.get("ORB_EDGE_THRESHOLD", "20"))


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8, scaling ``[0, 1]`` float images to ``[0, 255]``."""
    if image_np.dtype != np.uint8:
        if image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = image_np.astype(np.uint8)
    return image_np


def prepare_gray(image_np: np.ndarray) -> np.ndarray:
    """
    Grayscale, contrast-equalized and lightly blurred copy of an image.

    Args:
        image_np: RGB, RGBA or single-channel image.

    Raises:
        ValueError: If the array is not a 2-D or 3-D image.
    """
    image_np = normalize_image(image_np)
    if image_np.ndim == 3 and image_np.shape[2] == 4:
        gray = cv2.cvtColor(image_np, cv2.COLOR_RGBA2GRAY)
    elif image_np.ndim == 3 and image_np.shape[2] == 3:
        gray = cv2.cvtColor(image_np, cv2.COLOR_RGB2GRAY)
    elif image_np.ndim == 2:
        gray = image_np
    else:
        raise ValueError(f"Expected a 2-D or 3-D image array, got shape {image_np.shape}")

    # CLAHE for better feature detection across lighting conditions
    clahe = cv2.createCLAHE(clipLimit=3.0, tileGridSize=(8, 8))
    gray = clahe.apply(gray)
    return cv2.GaussianBlur(gray, (3, 3), 0)


def detect_orb(gray: np.ndarray, n_features: int = DEFAULT_N_FEATURES) -> Tuple[list, Optional[np.ndarray]]:
    """
    Run ORB, retrying with lenient parameters when nothing is found.

    Returns:
        Tuple of (keypoints, descriptors); descriptors is None when the
        image yields no keypoints at all.
    """
    orb = cv2.ORB_create(
        nfeatures=n_features,
        scaleFactor=1.2,
        nlevels=8,
        edgeThreshold=EDGE_THRESHOLD,
        firstLevel=0,
        WTA_K=2,
        patchSize=31,
        fastThreshold=FAST_THRESHOLD,
    )
    keypoints, descriptors = orb.detectAndCompute(gray, None)

    if descriptors is None:
        logger.warning("Primary ORB extraction found no features, trying fallback")
        orb_fallback = cv2.ORB_create(
            nfeatures=n_features + 500,
            scaleFactor=1.1,
            nlevels=10,
            edgeThreshold=10,
            fastThreshold=10,
        )
        keypoints, descriptors = orb_fallback.detectAndCompute(gray, None)
    return list(keypoints or []), descriptors


def extract_feature_set(image_np: np.ndarray, set_class: type = NeedlemanWunschFeatureSet,
                        locator: Optional[str] = None,
                        n_features: int = DEFAULT_N_FEATURES, **set_options) -> FeatureSet:
    """
    Extract ORB features of an image into a feature set.

    Args:
        image_np: RGB or grayscale image.
        set_class: FeatureSet subclass to build.
        locator: URI of the image, stored in the set's key.
        n_features: Maximum number of keypoints.
        **set_options: Extra constructor arguments of ``set_class``
            (e.g. ``sort_dimension``).

    Returns:
        Feature set keyed by a DimensionObjectKey ``[width,height] locator``;
        empty if the image has no detectable features.
    """
    gray = prepare_gray(image_np)
    h, w = gray.shape[:2]
    keypoints, descriptors = detect_orb(gray, n_features)

    points = []
    if descriptors is not None:
        for kp, desc in zip(keypoints, descriptors):
            points.append(ByteFeature(kp.pt[0] / w, kp.pt[1] / h, kp.angle, kp.size, desc))

    logger.debug(f"Extracted {len(points)} ORB features from {locator or 'image'} ({w}x{h})")
    return set_class(points, key=DimensionObjectKey(locator, (w, h)), **set_options)
