"""Tensor memory layouts for a batch of 3-channel images.

A batch of ``N`` images of ``H x W`` pixels is packed into one flat float32
buffer of ``N * H * W * 3`` values. The layout decides where the three channel
values of pixel ``(n, y, x)`` land:

    bchw (channel-first):  n*3*H*W + c*H*W + y*W + x
    bhwc (channel-last):   (n*H*W + y*W + x)*3 + c

Index arithmetic is elementwise, so ``x`` and ``y`` may be numpy index arrays.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

import numpy as np

from imgcls.errors import ConfigError, InvalidLayout

IndexT = TypeVar("IndexT", int, np.ndarray)

CHANNELS = 3


class Layout(StrEnum):
    BCHW = "bchw"
    BHWC = "bhwc"

    @classmethod
    def parse(cls, tag: str | Layout) -> Layout:
        """Resolve a layout tag such as ``"bchw"`` or ``"NHWC"``."""
        if isinstance(tag, Layout):
            return tag
        normalized = str(tag).strip().lower().replace("n", "b", 1)
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidLayout(tag) from None

    def index(
        self,
        batch_index: int,
        x: IndexT,
        y: IndexT,
        height: int,
        width: int,
    ) -> tuple[IndexT, IndexT, IndexT]:
        """Return the offsets of the first, second and third channel values."""
        if self is Layout.BCHW:
            plane = height * width
            first = batch_index * CHANNELS * plane + y * width + x
            return first, first + plane, first + 2 * plane
        first = (batch_index * height * width + y * width + x) * CHANNELS
        return first, first + 1, first + 2

    def shape(self, batch: int, height: int, width: int) -> list[int]:
        if self is Layout.BCHW:
            return [batch, CHANNELS, height, width]
        return [batch, height, width, CHANNELS]


@dataclass(frozen=True)
class LayoutStrategy:
    """A layout bound to the square edge size the model expects."""

    layout: Layout
    size: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "layout", Layout.parse(self.layout))
        if self.size <= 0:
            raise ConfigError(f"Layout size must be positive, got {self.size}")

    @classmethod
    def bchw(cls, size: int) -> LayoutStrategy:
        return cls(Layout.BCHW, size)

    @classmethod
    def bhwc(cls, size: int) -> LayoutStrategy:
        return cls(Layout.BHWC, size)

    def index(self, batch_index: int, x: IndexT, y: IndexT) -> tuple[IndexT, IndexT, IndexT]:
        return self.layout.index(batch_index, x, y, self.size, self.size)

    def shape(self, batch: int) -> list[int]:
        """Tensor shape vector for ``batch`` images."""
        return self.layout.shape(batch, self.size, self.size)

    def buffer_size(self, batch: int) -> int:
        return batch * self.size * self.size * CHANNELS
