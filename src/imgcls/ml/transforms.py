"""Preprocessing stages: image transforms, channel transforms, color order.

Each stage is a small frozen dataclass that is called like a function. The
pipeline applies image transforms to whole images and channel transforms to
float32 channel values, identically for R, G and B.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

import cv2
import numpy as np

from imgcls.errors import ConfigError
from imgcls.ml.image import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

ValueT = TypeVar("ValueT", float, np.ndarray)

# 65535 / 255: a 16-bit channel value divided by this, truncating, gives 0-255.
SIXTEEN_TO_EIGHT = 257


def to_eight_bit(values: NDArray[np.uint16]) -> NDArray[np.float32]:
    """Scale 16-bit channel values down to the 0-255 range (truncating)."""
    return (values // SIXTEEN_TO_EIGHT).astype(np.float32)


# ---------------------------------------------------------------------------
# Image transforms
# ---------------------------------------------------------------------------


class Interpolation(StrEnum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"
    AREA = "area"
    LANCZOS = "lanczos"

    @property
    def cv2_flag(self) -> int:
        return _CV2_INTERPOLATION[self]


_CV2_INTERPOLATION: dict[Interpolation, int] = {
    Interpolation.NEAREST: cv2.INTER_NEAREST,
    Interpolation.BILINEAR: cv2.INTER_LINEAR,
    Interpolation.BICUBIC: cv2.INTER_CUBIC,
    Interpolation.AREA: cv2.INTER_AREA,
    Interpolation.LANCZOS: cv2.INTER_LANCZOS4,
}


def _resize_pixels(image: Image, width: int, height: int, interpolation: Interpolation) -> Image:
    if image.width == width and image.height == height:
        return image
    resized = cv2.resize(
        image.pixels.copy(),
        (width, height),
        interpolation=interpolation.cv2_flag,
    )
    return Image(resized)


@dataclass(frozen=True)
class Resize:
    """Stretch an image to a ``size x size`` square."""

    size: int
    interpolation: Interpolation = Interpolation.BILINEAR

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ConfigError(f"Resize size must be positive, got {self.size}")
        object.__setattr__(self, "interpolation", Interpolation(self.interpolation))

    def __call__(self, image: Image) -> Image:
        return _resize_pixels(image, self.size, self.size, self.interpolation)


@dataclass(frozen=True)
class ResizeWithPadding:
    """Fit an image inside a ``size x size`` canvas, preserving aspect ratio.

    The image is scaled down (or up, when ``upscale`` is set) until its longer
    side fits, then centred on an opaque canvas of ``color``. Transparent source
    pixels are composited over the canvas colour.

    Attributes:
        size: Edge length of the square canvas.
        color: 8-bit (R, G, B) canvas colour.
        interpolation: Resampling filter used when scaling.
        upscale: Whether images smaller than the canvas are enlarged.
    """

    size: int
    color: tuple[int, int, int] = (0, 0, 0)
    interpolation: Interpolation = Interpolation.BICUBIC
    upscale: bool = False

    def __post_init__(self) -> None:
        if self.size <= 0:
            raise ConfigError(f"Canvas size must be positive, got {self.size}")
        if (
            not isinstance(self.color, (tuple, list))
            or len(self.color) != 3
            or any(not isinstance(c, (int, np.integer)) or not 0 <= c <= 255 for c in self.color)
        ):
            raise ConfigError(f"Padding color must be three 0-255 values, got {self.color}")
        object.__setattr__(self, "color", tuple(int(c) for c in self.color))
        object.__setattr__(self, "interpolation", Interpolation(self.interpolation))

    def fitted_size(self, width: int, height: int) -> tuple[int, int]:
        """Return the (width, height) the image is scaled to before padding."""
        scale = min(self.size / width, self.size / height)
        if not self.upscale:
            scale = min(scale, 1.0)
        new_width = min(self.size, max(1, round(width * scale)))
        new_height = min(self.size, max(1, round(height * scale)))
        return new_width, new_height

    def __call__(self, image: Image) -> Image:
        new_width, new_height = self.fitted_size(image.width, image.height)
        fitted = _resize_pixels(image, new_width, new_height, self.interpolation)

        background = [c * SIXTEEN_TO_EIGHT for c in self.color]
        canvas = np.empty((self.size, self.size, 4), dtype=np.uint16)
        canvas[:, :, :3] = background
        canvas[:, :, 3] = np.iinfo(np.uint16).max

        offset_x = (self.size - new_width) // 2
        offset_y = (self.size - new_height) // 2
        region = canvas[offset_y : offset_y + new_height, offset_x : offset_x + new_width]

        src = fitted.pixels
        alpha = src[:, :, 3:4].astype(np.float64) / np.iinfo(np.uint16).max
        blended = src[:, :, :3] * alpha + region[:, :, :3] * (1.0 - alpha)
        region[:, :, :3] = np.rint(blended).astype(np.uint16)
        return Image(canvas)


ImageTransform = Resize | ResizeWithPadding


# ---------------------------------------------------------------------------
# Channel transforms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rescale:
    """Multiply channel values by ``factor`` (0-255 -> 0-1 by default)."""

    factor: float = 1.0 / 255.0

    def __call__(self, values: ValueT) -> ValueT:
        return values * self.factor


@dataclass(frozen=True)
class Normalize:
    """Standardize channel values: ``(value - mean) / std``."""

    mean: float = 0.5
    std: float = 0.5

    def __post_init__(self) -> None:
        if self.std == 0:
            raise ConfigError("Normalize std must be non-zero")

    def __call__(self, values: ValueT) -> ValueT:
        return (values - self.mean) / self.std


ChannelTransform = Rescale | Normalize


# ---------------------------------------------------------------------------
# Color order
# ---------------------------------------------------------------------------


class ColorOrder(StrEnum):
    """Channel order the model expects its input in."""

    RGB = "rgb"
    BGR = "bgr"

    def __call__(self, r: ValueT, g: ValueT, b: ValueT) -> tuple[ValueT, ValueT, ValueT]:
        if self is ColorOrder.BGR:
            return b, g, r
        return r, g, b
