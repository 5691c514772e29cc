"""Image container used by the preprocessing pipeline.

Pixels are held as 16-bit normalized RGBA, so an 8-bit channel value ``v`` is
stored as ``v * 257`` and 255 maps to 65535.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

_EIGHT_TO_SIXTEEN = 257
_OPAQUE = np.iinfo(np.uint16).max


class Image:
    """Immutable ``H x W`` grid of 16-bit RGBA pixels."""

    __slots__ = ("_pixels",)

    def __init__(self, pixels: NDArray[np.uint16]) -> None:
        if pixels.dtype != np.uint16 or pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected HxWx4 uint16 pixels, got {pixels.dtype} {pixels.shape}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError("Image must have a non-zero width and height")
        frozen = np.array(pixels, dtype=np.uint16, copy=True)
        frozen.flags.writeable = False
        self._pixels = frozen

    @classmethod
    def from_array(cls, array: NDArray[np.generic]) -> Image:
        """Build an image from an RGB(A) or grayscale uint8/uint16 array.

        Args:
            array: ``HxW``, ``HxWx3`` or ``HxWx4`` array in RGB(A) channel order.

        Returns:
            A new Image; the input array is copied, never referenced.
        """
        if array.dtype == np.uint8:
            wide = array.astype(np.uint16) * _EIGHT_TO_SIXTEEN
        elif array.dtype == np.uint16:
            wide = array
        else:
            raise ValueError(f"Unsupported pixel dtype: {array.dtype}")

        if wide.ndim == 2:
            wide = np.repeat(wide[:, :, np.newaxis], 3, axis=2)
        if wide.ndim != 3 or wide.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported image shape: {array.shape}")
        if wide.shape[2] == 3:
            alpha = np.full(wide.shape[:2] + (1,), _OPAQUE, dtype=np.uint16)
            wide = np.concatenate([wide, alpha], axis=2)
        return cls(np.ascontiguousarray(wide, dtype=np.uint16))

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def pixels(self) -> NDArray[np.uint16]:
        """Read-only ``HxWx4`` view of the pixel data."""
        return self._pixels

    def premultiplied_rgb(self) -> NDArray[np.uint16]:
        """Return ``HxWx3`` RGB scaled by alpha, so transparent pixels read as black."""
        alpha = self._pixels[:, :, 3:4].astype(np.uint32)
        rgb = self._pixels[:, :, :3].astype(np.uint32) * alpha // _OPAQUE
        return rgb.astype(np.uint16)

    def rgba(self, x: int, y: int) -> tuple[int, int, int, int]:
        """Return the 16-bit (R, G, B, A) values at column ``x``, row ``y``."""
        r, g, b, a = self._pixels[y, x]
        return int(r), int(g), int(b), int(a)

    def __repr__(self) -> str:
        return f"Image(width={self.width}, height={self.height})"


def decode_image(data: bytes) -> Image:
    """Decode encoded image bytes (JPEG, PNG, ...) into an Image.

    16-bit PNGs keep their full precision.

    Raises:
        ValueError: If the bytes are empty or cannot be decoded.
    """
    if not data:
        raise ValueError("Failed to decode image: empty input")

    decoded = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_UNCHANGED)
    if decoded is None:
        raise ValueError("Failed to decode image")

    if decoded.ndim == 3 and decoded.shape[2] == 3:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)
    elif decoded.ndim == 3 and decoded.shape[2] == 4:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)
    return Image.from_array(decoded)
