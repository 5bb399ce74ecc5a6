"""Shared test fixtures for visual object tests."""

import numpy as np
import pytest

from visual_objects.features import ByteFeature
from visual_objects.keys import DimensionObjectKey


@pytest.fixture
def textured_image():
    """Generate a 200x200 image with texture patterns (good for ORB)."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 200
    # Add checkerboard pattern for strong ORB features
    for y in range(0, 200, 20):
        for x in range(0, 200, 20):
            if (x // 20 + y // 20) % 2 == 0:
                img[y:y+20, x:x+20] = [50, 50, 50]
    return img


@pytest.fixture
def blank_image():
    """Generate a 200x200 uniform gray image with no features."""
    return np.ones((200, 200, 3), dtype=np.uint8) * 128


@pytest.fixture
def make_point():
    """Factory for ByteFeature points with a short descriptor."""
    def _make(x, y, *descriptor, keys=None):
        return ByteFeature(x, y, 0.0, 1.0, list(descriptor) or [0], quantized_keys=keys)
    return _make


@pytest.fixture
def image_key():
    """Key of a 100x100 image."""
    return DimensionObjectKey("img/sample.jpg", (100, 100))


class FakeOracle:
    """Similarity oracle returning 1 for equal descriptors and 0.25 otherwise."""

    def __init__(self):
        self.calls = 0

    def similarity(self, a: bytes, b: bytes) -> float:
        self.calls += 1
        return 1.0 if a == b else 0.25


@pytest.fixture
def fake_oracle():
    return FakeOracle()
