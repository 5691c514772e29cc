"""Tests for the preprocessing pipeline."""

from __future__ import annotations

import itertools

import numpy as np
import pytest
from conftest import random_image, solid_image

from imgcls.errors import DimensionMismatch, EmptyBatch
from imgcls.ml.image import Image
from imgcls.ml.layout import Layout, LayoutStrategy
from imgcls.ml.preprocessing import PipelineConfig, PreprocessingPipeline
from imgcls.ml.transforms import ColorOrder, Normalize, Rescale, Resize, ResizeWithPadding


def _pipeline(layout: Layout = Layout.BCHW, size: int = 4, **kwargs: object) -> PreprocessingPipeline:
    return PreprocessingPipeline(PipelineConfig(layout=LayoutStrategy(layout, size), **kwargs))  # type: ignore[arg-type]


def _eight_bit_rgb(image: object) -> np.ndarray:
    return (image.pixels[:, :, :3] // 257).astype(np.float32)  # type: ignore[attr-defined]


class TestPipelineConfig:
    def test_lists_become_tuples(self) -> None:
        config = PipelineConfig(
            layout=LayoutStrategy.bchw(4),
            image_transforms=[Resize(4)],  # type: ignore[arg-type]
            channel_transforms=[Rescale()],  # type: ignore[arg-type]
        )
        assert config.image_transforms == (Resize(4),)
        assert config.channel_transforms == (Rescale(),)

    def test_color_order_from_string(self) -> None:
        config = PipelineConfig(layout=LayoutStrategy.bchw(4), color_order="bgr")  # type: ignore[arg-type]
        assert config.color_order is ColorOrder.BGR

    def test_workers_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PipelineConfig(layout=LayoutStrategy.bchw(4), workers=0)


class TestPreprocess:
    @pytest.mark.parametrize("layout", list(Layout))
    def test_buffer_length(self, layout: Layout) -> None:
        images = [random_image(5, 3, seed=i) for i in range(3)]
        buffer = _pipeline(layout).preprocess(images)
        assert len(buffer) == 3 * 5 * 3 * 3
        assert (buffer.batch, buffer.height, buffer.width) == (3, 3, 5)
        assert buffer.data.dtype == np.float32

    def test_bchw_round_trip(self) -> None:
        images = [random_image(4, 3, seed=1), random_image(4, 3, seed=2)]
        buffer = _pipeline(Layout.BCHW).preprocess(images)

        for n, image in enumerate(images):
            expected = _eight_bit_rgb(image)
            for y, x in itertools.product(range(3), range(4)):
                offsets = Layout.BCHW.index(n, x, y, 3, 4)
                assert tuple(buffer.data[list(offsets)]) == tuple(expected[y, x])

    def test_bchw_matches_planar_transpose(self) -> None:
        images = [random_image(4, 4, seed=s) for s in range(2)]
        buffer = _pipeline(Layout.BCHW).preprocess(images)
        expected = np.stack([_eight_bit_rgb(img).transpose(2, 0, 1) for img in images])
        np.testing.assert_array_equal(buffer.data.reshape(2, 3, 4, 4), expected)

    def test_bhwc_matches_interleaved_pixels(self) -> None:
        images = [random_image(4, 4, seed=s) for s in range(2)]
        buffer = _pipeline(Layout.BHWC).preprocess(images)
        expected = np.stack([_eight_bit_rgb(img) for img in images])
        np.testing.assert_array_equal(buffer.data.reshape(2, 4, 4, 3), expected)

    def test_identity_pipeline_reproduces_eight_bit_rgb(self) -> None:
        image = random_image(4, 4, seed=7)
        buffer = _pipeline(Layout.BHWC, image_transforms=(Resize(4),)).preprocess([image])
        np.testing.assert_allclose(buffer.data.reshape(4, 4, 3), _eight_bit_rgb(image), atol=0.5)

    def test_bgr_reverses_channels(self) -> None:
        buffer = _pipeline(Layout.BHWC, size=2, color_order=ColorOrder.BGR).preprocess(
            [solid_image(2, 2, (10, 20, 30))]
        )
        np.testing.assert_array_equal(buffer.data.reshape(-1, 3), [[30, 20, 10]] * 4)

    def test_channel_transforms_apply_in_order(self) -> None:
        image = solid_image(2, 2, (0, 51, 255))
        forward = _pipeline(Layout.BHWC, size=2, channel_transforms=(Rescale(), Normalize(0.5, 0.5)))
        np.testing.assert_allclose(
            forward.preprocess([image]).data[:3],
            [-1.0, (0.2 - 0.5) / 0.5, 1.0],
            rtol=1e-6,
        )

        backward = _pipeline(Layout.BHWC, size=2, channel_transforms=(Normalize(0.5, 0.5), Rescale()))
        np.testing.assert_allclose(
            backward.preprocess([image]).data[:3],
            [-1.0 / 255, (51 - 0.5) / 0.5 / 255, (255 - 0.5) / 0.5 / 255],
            rtol=1e-6,
        )

    def test_resize_brings_mixed_sizes_to_common_size(self) -> None:
        images = [random_image(10, 6, seed=0), random_image(3, 8, seed=1)]
        buffer = _pipeline(image_transforms=(Resize(4),)).preprocess(images)
        assert (buffer.batch, buffer.height, buffer.width) == (2, 4, 4)

    def test_mismatched_sizes_raise(self) -> None:
        images = [solid_image(4, 4), solid_image(4, 4), solid_image(5, 4)]
        with pytest.raises(DimensionMismatch, match="Image 2") as exc_info:
            _pipeline().preprocess(images)
        assert exc_info.value.image_index == 2

    def test_empty_batch_raises(self) -> None:
        with pytest.raises(EmptyBatch):
            _pipeline().preprocess([])

    def test_threaded_packing_matches_serial(self) -> None:
        images = [random_image(6, 6, seed=s) for s in range(5)]
        transforms = (Resize(4),)
        channel = (Rescale(), Normalize(0.5, 0.5))
        serial = _pipeline(image_transforms=transforms, channel_transforms=channel).preprocess(images)
        threaded = _pipeline(image_transforms=transforms, channel_transforms=channel, workers=3).preprocess(images)
        np.testing.assert_array_equal(serial.data, threaded.data)

    def test_input_images_not_mutated(self) -> None:
        image = random_image(6, 6, seed=3)
        before = image.pixels.copy()
        _pipeline(image_transforms=(Resize(4),), channel_transforms=(Rescale(),)).preprocess([image])
        np.testing.assert_array_equal(image.pixels, before)

    def test_transparent_pixels_pack_as_black(self) -> None:
        pixels = np.full((2, 2, 4), 65535, dtype=np.uint16)
        pixels[:, :, 3] = 0
        buffer = _pipeline(size=2).preprocess([Image(pixels)])
        np.testing.assert_array_equal(buffer.data, np.zeros(12, dtype=np.float32))

    def test_partial_alpha_is_premultiplied(self) -> None:
        pixels = np.zeros((1, 1, 4), dtype=np.uint16)
        pixels[0, 0] = (65535, 32768 * 2 - 2, 1000, 32768)
        buffer = _pipeline(Layout.BHWC, size=1).preprocess([Image(pixels)])
        # half alpha: 32768, 32767 and 500 before the downscale
        assert buffer.data.tolist() == [127.0, 127.0, 1.0]

    def test_transparency_matches_padded_path(self) -> None:
        rgba = np.zeros((4, 4, 4), dtype=np.uint8)
        rgba[:, :] = (255, 128, 0, 0)
        rgba[1, 2] = (10, 20, 30, 255)
        image = Image.from_array(rgba)

        plain = _pipeline(image_transforms=(Resize(4),)).preprocess([image])
        padded = _pipeline(image_transforms=(ResizeWithPadding(4),)).preprocess([image])
        np.testing.assert_array_equal(plain.data, padded.data)
