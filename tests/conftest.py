# tests/conftest.py

import numpy as np
import pytest

from core.database import MediaDatabase
from core.frame_sampler import FrameSource
from core.hash_codec import bits_to_hex


def fingerprint_with_bits(set_bits, length: int = 64) -> str:
    """Hex fingerprint of ``length`` bits with the given positions set"""
    bits = np.zeros(length, dtype=bool)
    for position in set_bits:
        bits[position] = True
    return bits_to_hex(bits)


def gradient_grid(height: int = 8, seed: int = 0) -> np.ndarray:
    """Deterministic (height x height+1) grayscale grid"""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, height + 1), dtype=np.uint8)


class SyntheticFrameSource(FrameSource):
    """
    Frame source backed by a dict of path -> grid.

    A value may also be a dict of timestamp -> grid for videos. Every
    request is recorded in ``calls``.
    """

    def __init__(self, frames=None):
        self.frames = frames or {}
        self.calls = []

    def extract(self, path, width, height, timestamp=None):
        self.calls.append((path, timestamp))
        frame = self.frames.get(path)
        if isinstance(frame, dict):
            frame = frame.get(timestamp)
        return frame


@pytest.fixture
def db(tmp_path):
    database = MediaDatabase(str(tmp_path / "media.db"))
    yield database
    database.close()


@pytest.fixture
def media_file(tmp_path):
    """Factory creating placeholder media files on disk"""
    def _create(name: str, content: bytes = b"media") -> str:
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return _create
