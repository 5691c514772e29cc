"""Mapping raw output vectors to labeled probabilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from imgcls.errors import ConfigError, LabelsUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    import numpy as np
    from numpy.typing import NDArray


@dataclass(frozen=True)
class LabelProb:
    """A single label with its probability. Unpacks as ``label, probability``."""

    label: str
    probability: float

    def __iter__(self) -> Iterator[str | float]:
        yield self.label
        yield self.probability


def _check_lengths(raw: Sequence[float] | NDArray[np.float32], labels: Sequence[str]) -> None:
    if len(raw) != len(labels):
        raise ConfigError(f"Got {len(raw)} probabilities for {len(labels)} labels")


def label(raw: Sequence[float] | NDArray[np.float32], labels: Sequence[str]) -> list[LabelProb]:
    """Pair each probability with the label at the same position."""
    _check_lengths(raw, labels)
    return [LabelProb(name, float(prob)) for name, prob in zip(labels, raw, strict=True)]


def top1(raw: Sequence[float] | NDArray[np.float32], labels: Sequence[str]) -> LabelProb:
    """Return the label with the greatest probability.

    Ties go to the earliest index: ``[0.5, 0.5]`` with ``["a", "b"]`` gives ``a``.
    """
    _check_lengths(raw, labels)
    if len(labels) == 0:
        raise ConfigError("Cannot pick a top label from an empty output")
    best = 0
    for i in range(1, len(raw)):
        if raw[i] > raw[best]:
            best = i
    return LabelProb(labels[best], float(raw[best]))


def ranked(
    raw: Sequence[float] | NDArray[np.float32],
    labels: Sequence[str],
    k: int | None = None,
) -> list[LabelProb]:
    """Return label pairs sorted by descending probability, optionally the first ``k``."""
    pairs = sorted(label(raw, labels), key=lambda pair: pair.probability, reverse=True)
    return pairs if k is None else pairs[:k]


@dataclass(frozen=True, eq=False)
class ClassificationResult:
    """Output of one model head for every image in a batch.

    Attributes:
        name: Output tensor name.
        raw: One probability vector per image, in batch order.
        labels: Labels for the head, or None when the head is unlabeled.
    """

    name: str
    raw: list[NDArray[np.float32]]
    labels: tuple[str, ...] | None = None

    def __len__(self) -> int:
        return len(self.raw)

    @property
    def has_labels(self) -> bool:
        return self.labels is not None

    def _require_labels(self) -> tuple[str, ...]:
        if self.labels is None:
            raise LabelsUnavailable(self.name)
        return self.labels

    def labeled(self) -> list[list[LabelProb]]:
        """Per image, every label paired with its probability in label order."""
        labels = self._require_labels()
        return [label(probs, labels) for probs in self.raw]

    def top1(self) -> list[LabelProb]:
        """Per image, the most probable label."""
        labels = self._require_labels()
        return [top1(probs, labels) for probs in self.raw]

    def ranked(self, k: int | None = None) -> list[list[LabelProb]]:
        """Per image, label pairs sorted by descending probability."""
        labels = self._require_labels()
        return [ranked(probs, labels, k) for probs in self.raw]
