"""Result interpretation: turn raw model scores into a classification result."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from classifyx.errors import EmptyOutputError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike


@dataclass(frozen=True)
class ClassificationResult:
    """The top prediction for one image."""

    predicted_class_index: int
    score: float
    display_text: str
    label: str | None = None


def argmax_first(values: Sequence[float]) -> int:
    """Index of the largest value; the first occurrence wins on ties.

    Raises:
        EmptyOutputError: If ``values`` is empty.
    """
    if len(values) == 0:
        raise EmptyOutputError("Model output is empty")

    best_index = 0
    best_value = values[0]
    for index in range(1, len(values)):
        if values[index] > best_value:
            best_value = values[index]
            best_index = index
    return best_index


def format_result(index: int, score: float, label: str | None = None) -> str:
    # Shortest float32 repr, so 0.9 from the model reads "0.9".
    text = f"Predicted class: {index}\nClassification score: {np.float32(score)}"
    if label is not None:
        text += f"\nLabel: {label}"
    return text


def interpret(output: ArrayLike, labels: Sequence[str] | None = None) -> ClassificationResult:
    """Pick the top class from a model output.

    Args:
        output: Raw scores, either ``(N,)`` or ``(1, N)``.
        labels: Optional class names indexed by class id.

    Raises:
        EmptyOutputError: If the output holds no scores.
    """
    scores = np.asarray(output, dtype=np.float32).reshape(-1)
    index = argmax_first(scores)
    score = float(scores[index])
    label = labels[index] if labels is not None and index < len(labels) else None
    return ClassificationResult(
        predicted_class_index=index,
        score=score,
        display_text=format_result(index, score, label),
        label=label,
    )


def load_labels(path: str | Path) -> list[str]:
    """Read one class name per line, keeping line positions as class ids."""
    return [line.strip() for line in Path(path).read_text(encoding="utf-8").splitlines()]
