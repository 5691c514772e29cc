"""Tests for tensor layouts."""

from __future__ import annotations

import itertools

import numpy as np
import pytest

from imgcls.errors import ConfigError, InvalidLayout
from imgcls.ml.layout import Layout, LayoutStrategy


class TestLayoutParse:
    @pytest.mark.parametrize(
        ("tag", "expected"),
        [
            ("bchw", Layout.BCHW),
            ("BHWC", Layout.BHWC),
            ("nchw", Layout.BCHW),
            ("NHWC", Layout.BHWC),
            (Layout.BHWC, Layout.BHWC),
        ],
    )
    def test_known_tags(self, tag: str, expected: Layout) -> None:
        assert Layout.parse(tag) is expected

    @pytest.mark.parametrize("tag", ["chw", "", "bcwh", "hwc"])
    def test_unknown_tag_raises(self, tag: str) -> None:
        with pytest.raises(InvalidLayout, match="Invalid layout"):
            Layout.parse(tag)

    def test_invalid_layout_is_config_error(self) -> None:
        with pytest.raises(ConfigError):
            LayoutStrategy("planar", 4)  # type: ignore[arg-type]


class TestLayoutStrategy:
    def test_bchw_shape(self) -> None:
        assert LayoutStrategy.bchw(384).shape(2) == [2, 3, 384, 384]

    def test_bhwc_shape(self) -> None:
        assert LayoutStrategy.bhwc(224).shape(5) == [5, 224, 224, 3]

    def test_bchw_offsets(self) -> None:
        strategy = LayoutStrategy.bchw(4)
        # n=1, y=2, x=3: 1*3*16 + c*16 + 2*4 + 3
        assert strategy.index(1, 3, 2) == (59, 75, 91)

    def test_bhwc_offsets(self) -> None:
        strategy = LayoutStrategy.bhwc(4)
        # n=1, y=2, x=3: (16 + 8 + 3) * 3 + c
        assert strategy.index(1, 3, 2) == (81, 82, 83)

    def test_non_positive_size_rejected(self) -> None:
        with pytest.raises(ConfigError):
            LayoutStrategy.bchw(0)

    @pytest.mark.parametrize("layout", list(Layout))
    def test_offsets_distinct_and_in_bounds(self, layout: Layout) -> None:
        size, batch = 5, 3
        strategy = LayoutStrategy(layout, size)
        total = strategy.buffer_size(batch)
        seen: set[int] = set()
        for n, y, x in itertools.product(range(batch), range(size), range(size)):
            offsets = strategy.index(n, x, y)
            assert len(set(offsets)) == 3
            for offset in offsets:
                assert 0 <= offset < total
                # each offset stays inside its image's slice
                assert n * size * size * 3 <= offset < (n + 1) * size * size * 3
            seen.update(offsets)
        assert len(seen) == total

    @pytest.mark.parametrize("layout", list(Layout))
    def test_array_index_matches_scalar(self, layout: Layout) -> None:
        ys, xs = np.indices((3, 4))
        first, second, third = layout.index(2, xs, ys, 3, 4)
        for y, x in itertools.product(range(3), range(4)):
            assert (first[y, x], second[y, x], third[y, x]) == layout.index(2, x, y, 3, 4)

    def test_non_square_geometry(self) -> None:
        # 2 rows x 3 columns, bchw
        assert Layout.BCHW.index(0, 2, 1, 2, 3) == (5, 11, 17)
        assert Layout.BHWC.shape(1, 2, 3) == [1, 2, 3, 3]
