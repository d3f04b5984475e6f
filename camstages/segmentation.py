"""Image segmentation stage for a 257x257 segmentation network."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from camstages.detection import Segmentation
from camstages.stage import CameraApp, CompletedRequest, register_stage
from camstages.tf_stage import ModelLoader, TfConfig, TfStage

logger = logging.getLogger(__name__)

WIDTH = 257
HEIGHT = 257
RESULT_KEY = "segmentation.result"


@dataclass
class SegmentationTfConfig(TfConfig):
    draw: bool = True
    threshold: int = 5000  # pixels in a category before its name is reported


def _read_labels(path: str) -> list[str]:
    try:
        with open(path, encoding="utf-8", newline="") as f:
            lines = f.read().split("\n")
    except OSError as exc:
        raise RuntimeError("SegmentationTfStage: Failed to load labels file") from exc
    if lines and lines[-1] == "":
        lines.pop()
    return lines


@register_stage("segmentation_tf")
class SegmentationTfStage(TfStage):
    """Label every pixel of the lores image with its most likely category."""

    config_class = SegmentationTfConfig

    def __init__(self, app: CameraApp, model_loader: ModelLoader | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, model_loader)
        self._labels: list[str] = []
        self._segmentation = np.zeros(WIDTH * HEIGHT, dtype=np.uint8)

    def name(self) -> str:
        return "segmentation_tf"

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.draw = bool(int(params.get("draw", 1)))
        cfg.threshold = int(params.get("threshold", 5000))
        self._labels = _read_labels(str(params.get("labels_file", "")))

        shape = tuple(self.model.output_shape(0))
        if len(shape) != 4 or shape[1:] != (HEIGHT, WIDTH, len(self._labels)):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def check_configuration(self) -> None:
        if not self.main_stream and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def interpret_outputs(self) -> None:
        num_categories = len(self._labels)
        scores = np.asarray(self.model.output(0)).reshape(HEIGHT * WIDTH, num_categories)
        # argmax picks the first of equal maxima, as max_element does.
        self._segmentation = scores.argmax(axis=1).astype(np.uint8)

        if self.config.verbose:
            counts = Counter(self._segmentation.tolist())
            ranked = sorted(
                ((counts.get(i, 0), i) for i in range(num_categories)),
                key=lambda item: item[0],
                reverse=True,
            )
            names = [
                f"{self._labels[i]} ({count})"
                for count, i in ranked
                if count >= self.config.threshold
            ]
            # Stop at the first category under the threshold.
            shown = []
            for (count, _), name in zip(ranked, names):
                if count < self.config.threshold:
                    break
                shown.append(name)
            logger.info("%s", ", ".join(shown))

    def apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata[RESULT_KEY] = Segmentation(
            WIDTH, HEIGHT, list(self._labels), bytes(self._segmentation)
        )
        if not self.config.draw:
            return
        self._draw(completed_request.buffers[self.main_stream])

    def _draw(self, buffer: Any) -> None:
        """Draw the map, in greyscale, into the bottom right corner of the main image."""
        info = self.main_stream_info
        y_offset = info.height - HEIGHT
        x_offset = info.width - WIDTH
        if y_offset < 0 or x_offset < 0:
            raise ValueError("SegmentationTfStage: main image smaller than the segmentation")
        out = np.frombuffer(buffer, dtype=np.uint8)
        scale = 255 // max(len(self._labels), 1)

        seg = self._segmentation.astype(np.int64).reshape(HEIGHT, WIDTH)
        y_idx = (np.arange(HEIGHT)[:, None] + y_offset) * info.stride + x_offset + np.arange(WIDTH)[None, :]
        out[y_idx] = ((scale * seg) & 0xFF).astype(np.uint8)

        chroma_stride = info.stride // 2
        u_start = info.height * info.stride
        uv_size = (info.height // 2) * chroma_stride
        c_idx = (
            u_start
            + (np.arange(HEIGHT // 2)[:, None] + y_offset // 2) * chroma_stride
            + x_offset // 2
            + np.arange(WIDTH // 2)[None, :]
        )
        out[c_idx] = 128
        out[c_idx + uv_size] = 128