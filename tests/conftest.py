"""Shared fixtures: synthetic images and a tiny ONNX classifier."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import onnx
import pytest
from onnx import TensorProto, helper
from PIL import Image

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

MODEL_FILENAME = "classifier.onnx"


def _build_channel_mean_model() -> onnx.ModelProto:
    """(1, 224, 224, 3) -> (1, 3): the mean of each color channel is its class score."""
    graph = helper.make_graph(
        nodes=[helper.make_node("ReduceMean", ["image"], ["scores"], axes=[1, 2], keepdims=0)],
        name="channel_mean",
        inputs=[helper.make_tensor_value_info("image", TensorProto.FLOAT, [1, 224, 224, 3])],
        outputs=[helper.make_tensor_value_info("scores", TensorProto.FLOAT, [1, 3])],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    return model


@pytest.fixture()
def model_dir(tmp_path: Path) -> Path:
    """Directory holding a valid classifier.onnx."""
    onnx.save(_build_channel_mean_model(), str(tmp_path / MODEL_FILENAME))
    return tmp_path


@pytest.fixture()
def make_image_bytes() -> Callable[..., bytes]:
    """Factory for encoded solid-color images."""

    def _make(
        width: int = 32,
        height: int = 32,
        color: tuple[int, int, int] = (255, 0, 0),
        fmt: str = "PNG",
    ) -> bytes:
        buf = io.BytesIO()
        Image.new("RGB", (width, height), color).save(buf, format=fmt)
        return buf.getvalue()

    return _make
