"""Image batch preprocessing pipeline.

Pipeline, per image:
    1. Apply the image transforms in order (resize, resize-with-padding, ...)
    2. Premultiply by alpha, then scale 16-bit channel values down to 0-255
       (divide by 257, truncating)
    3. Apply the channel transforms in order, identically to R, G and B
    4. Reorder channels for the model (RGB or BGR)
    5. Write the three values through the layout's offsets into one flat buffer

Every image must reach the same size after step 1. Each image writes only
its own contiguous slice of the buffer, so images can be packed in parallel.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from imgcls.errors import DimensionMismatch, EmptyBatch
from imgcls.ml.layout import CHANNELS, LayoutStrategy
from imgcls.ml.transforms import ColorOrder, to_eight_bit

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from numpy.typing import NDArray

    from imgcls.ml.image import Image
    from imgcls.ml.transforms import ChannelTransform, ImageTransform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable description of how a batch of images becomes a tensor."""

    layout: LayoutStrategy
    image_transforms: tuple[ImageTransform, ...] = ()
    channel_transforms: tuple[ChannelTransform, ...] = ()
    color_order: ColorOrder = ColorOrder.RGB
    workers: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "image_transforms", tuple(self.image_transforms))
        object.__setattr__(self, "channel_transforms", tuple(self.channel_transforms))
        object.__setattr__(self, "color_order", ColorOrder(self.color_order))
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")


@dataclass(frozen=True, eq=False)
class FlatBuffer:
    """Packed float32 batch plus the geometry it was packed with."""

    data: NDArray[np.float32]
    batch: int
    height: int
    width: int

    def __len__(self) -> int:
        return int(self.data.shape[0])


class PreprocessingPipeline:
    """Converts a batch of Images into one FlatBuffer according to a PipelineConfig."""

    def __init__(self, config: PipelineConfig) -> None:
        self._config = config

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def transform(self, image: Image) -> Image:
        """Apply the configured image transforms in order."""
        for fn in self._config.image_transforms:
            image = fn(image)
        return image

    def preprocess(self, images: Sequence[Image]) -> FlatBuffer:
        """Pack a batch of images into a flat float32 buffer.

        Raises:
            EmptyBatch: If ``images`` is empty.
            DimensionMismatch: If the transformed images differ in size.
        """
        if len(images) == 0:
            raise EmptyBatch

        start = time.perf_counter()
        with self._executor() as map_fn:
            transformed = list(map_fn(self.transform, images))

            height, width = transformed[0].height, transformed[0].width
            for idx, img in enumerate(transformed[1:], start=1):
                if img.height != height or img.width != width:
                    raise DimensionMismatch(
                        f"Image {idx} is {img.width}x{img.height} after transforms, "
                        f"expected {width}x{height} like image 0",
                        image_index=idx,
                    )

            batch = len(transformed)
            data = np.empty(batch * height * width * CHANNELS, dtype=np.float32)
            ys, xs = np.indices((height, width))

            def pack(n: int) -> None:
                self._pack(data, n, transformed[n], xs, ys)

            list(map_fn(pack, range(batch)))

        logger.debug(
            "Preprocessed %d images to %dx%d in %.1f ms",
            batch,
            width,
            height,
            (time.perf_counter() - start) * 1000,
        )
        return FlatBuffer(data=data, batch=batch, height=height, width=width)

    def _pack(
        self,
        data: NDArray[np.float32],
        n: int,
        image: Image,
        xs: NDArray[np.intp],
        ys: NDArray[np.intp],
    ) -> None:
        conf = self._config
        rgb = image.premultiplied_rgb()
        r, g, b = (to_eight_bit(rgb[:, :, c]) for c in range(CHANNELS))

        for fn in conf.channel_transforms:
            r = fn(r)
            g = fn(g)
            b = fn(b)

        first, second, third = conf.color_order(r, g, b)
        i1, i2, i3 = conf.layout.layout.index(n, xs, ys, image.height, image.width)
        data[i1] = first
        data[i2] = second
        data[i3] = third

    def _executor(self) -> _Mapper:
        return _Mapper(self._config.workers)


class _Mapper:
    """Context manager yielding a ``map`` over a thread pool, or the builtin ``map``."""

    def __init__(self, workers: int) -> None:
        self._workers = workers
        self._pool: ThreadPoolExecutor | None = None

    def __enter__(self) -> Callable[..., Iterable[object]]:
        if self._workers == 1:
            return map
        self._pool = ThreadPoolExecutor(
            max_workers=self._workers,
            thread_name_prefix="imgcls-preprocess",
        )
        return self._pool.map

    def __exit__(self, *exc_info: object) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
