# core/hash_codec.py

from typing import Sequence, Union
import numpy as np

HASH_SIZE = 8
HASH_BITS = HASH_SIZE * HASH_SIZE

AHASH = "ahash"
DHASH = "dhash"
ALGORITHMS = (AHASH, DHASH)

_HEX_DIGITS = "0123456789abcdef"
_NIBBLE_SHIFTS = np.array([3, 2, 1, 0], dtype=np.uint8)

BitsLike = Union[np.ndarray, Sequence[int], Sequence[bool], str]


class HashCodecError(ValueError):
    """Raised for unusable codec input (bad grid shape, unknown algorithm, bad hex)"""


def _as_grid(pixels) -> np.ndarray:
    grid = np.asarray(pixels)
    if grid.ndim != 2 or grid.size == 0:
        raise HashCodecError(f"Expected a non-empty 2D pixel grid, got shape {grid.shape}")
    return grid.astype(np.float64)


def average_hash_bits(pixels) -> np.ndarray:
    """
    Average hash over an N x N grid: a bit is set when the pixel is at
    or above the grid mean. Bits are returned in row-major order.

    An (N+1) x N sampler grid is accepted as well; its extra right-hand
    column only exists for dHash and is dropped here.
    """
    grid = _as_grid(pixels)
    height, width = grid.shape
    if width == height + 1:
        grid = grid[:, :height]
    elif width != height:
        raise HashCodecError(f"aHash needs a square grid, got {height}x{width}")

    mean = grid.mean()
    return (grid >= mean).flatten()


def difference_hash_bits(pixels) -> np.ndarray:
    """
    Difference hash over an (N+1) x N grid (N rows, N+1 columns).

    Each bit compares a pixel to its right-hand neighbour in the same
    row and is set when the left pixel is darker.
    """
    grid = _as_grid(pixels)
    height, width = grid.shape
    if width != height + 1:
        raise HashCodecError(
            f"dHash needs {height + 1} columns for {height} rows, got {width}"
        )

    return (grid[:, :-1] < grid[:, 1:]).flatten()


def bits_to_hex(bits: BitsLike) -> str:
    """
    Pack bits into lowercase hex, 4 bits per digit.

    A trailing partial nibble is read as a number, i.e. zero-padded on the
    left, so '1' packs to '1' and '10' packs to '2'.
    """
    if isinstance(bits, str):
        bit_list = [1 if b == '1' else 0 for b in bits if b in '01']
    else:
        bit_list = [1 if b else 0 for b in np.asarray(bits).flatten()]

    digits = []
    for i in range(0, len(bit_list), 4):
        value = 0
        for bit in bit_list[i:i + 4]:
            value = (value << 1) | bit
        digits.append(_HEX_DIGITS[value])

    return ''.join(digits)


def hex_to_bits(hex_string: str) -> np.ndarray:
    """Expand every hex digit to exactly 4 bits (most significant first)"""
    if hex_string is None:
        raise HashCodecError("No hash to decode")

    try:
        values = [int(ch, 16) for ch in hex_string]
    except ValueError:
        raise HashCodecError(f"Not a hexadecimal hash: {hex_string!r}")

    nibbles = np.array(values, dtype=np.uint8).reshape(-1, 1)
    return ((nibbles >> _NIBBLE_SHIFTS) & 1).astype(bool).flatten()


def encode(pixels, algorithm: str = DHASH) -> str:
    """Convert a pixel grid into a hex fingerprint"""
    if algorithm == DHASH:
        bits = difference_hash_bits(pixels)
    elif algorithm == AHASH:
        bits = average_hash_bits(pixels)
    else:
        raise HashCodecError(f"Unknown hash algorithm: {algorithm}")

    return bits_to_hex(bits)


def grid_shape(hash_size: int = HASH_SIZE) -> tuple:
    """(width, height) of the grid the sampler must deliver"""
    return hash_size + 1, hash_size
