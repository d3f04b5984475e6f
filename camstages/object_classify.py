"""Image classification stage for a 224x224 classifier network."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

import numpy as np

from camstages.stage import CameraApp, CompletedRequest, register_stage
from camstages.tf_stage import ModelLoader, TfConfig, TfStage

logger = logging.getLogger(__name__)

WIDTH = 224
HEIGHT = 224
RESULTS_KEY = "object_classify.results"
ANNOTATE_KEY = "annotate.text"
DEFAULT_LABELS_FILE = "/home/pi/models/labels.txt"
_LABEL_PADDING = 16


@dataclass
class ObjectClassifyTfConfig(TfConfig):
    number_of_results: int = 3
    top_n_results: int = 0
    threshold_high: float = 0.2
    threshold_low: float = 0.1
    display_labels: bool = True


def read_classify_labels(path: str) -> list[str]:
    """Read a labels file, one label per line."""
    try:
        with open(path, encoding="utf-8", newline="") as f:
            lines = f.read().split("\n")
    except OSError as exc:
        raise RuntimeError("ObjectClassifyTfStage: Failed to load labels file") from exc
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def top_results(
    prediction: Sequence[int],
    num_results: int,
    threshold_low: float,
    threshold_high: float,
    previous: Iterable[tuple[float, int]] = (),
) -> list[tuple[float, int]]:
    """Return the most confident (confidence, index) pairs, in descending order.

    A prediction is kept when it reaches threshold_high, or when it reaches
    threshold_low and its index was among the previous results.
    """
    low = float(np.float32(threshold_low))
    high = float(np.float32(threshold_high))
    previous_indices = {index for _, index in previous}
    heap: list[tuple[float, int]] = []
    for index, value in enumerate(prediction):
        confidence = float(np.float32(int(value) / 255.0))
        if confidence < low:
            continue
        if confidence >= high or index in previous_indices:
            heapq.heappush(heap, (confidence, index))
            if len(heap) > num_results:
                heapq.heappop(heap)
    return sorted(heap, reverse=True)


def _short_label(label: str) -> str:
    # Labels look like "id:name, synonym, ..."; keep just the name.
    begin = label.find(":") + 1
    end = label.find(",")
    if end == -1 or end < begin:
        return label[begin:]
    return label[begin:end]


def format_annotation(results: Iterable[tuple[str, float]]) -> str:
    """Text describing the results, for the annotation stage to draw."""
    parts = [f"{_short_label(label)} {confidence:.2g}" for label, confidence in results]
    return "Detected: " + ", ".join(parts)


@register_stage("object_classify_tf")
class ObjectClassifyTfStage(TfStage):
    """Classify the lores image and report the most likely labels."""

    config_class = ObjectClassifyTfConfig

    def __init__(self, app: CameraApp, model_loader: ModelLoader | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, model_loader)
        self._labels: list[str] = []
        self._label_count = 0
        self._top: list[tuple[float, int]] = []
        self._results: list[tuple[str, float]] = []

    def name(self) -> str:
        return "object_classify_tf"

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_results = int(params.get("number_of_results", 3))
        cfg.threshold_high = float(params.get("threshold_high", 0.2))
        cfg.threshold_low = float(params.get("threshold_low", 0.1))
        cfg.display_labels = bool(int(params.get("display_labels", 1)))

        labels = read_classify_labels(str(params.get("labels_file", DEFAULT_LABELS_FILE)))
        self._label_count = len(labels)
        self._labels = labels + [""] * (-len(labels) % _LABEL_PADDING)

        # A mismatch usually means the wrong model or the wrong labels file.
        if self.model.output_shape(0)[-1] != self._label_count:
            raise RuntimeError("ObjectClassifyTfStage: Label count mismatch")

    def interpret_outputs(self) -> None:
        size = self.model.output_shape(0)[-1]
        prediction = np.ravel(self.model.output(0))[:size]
        cfg = self.config
        self._top = top_results(
            prediction, cfg.number_of_results, cfg.threshold_low, cfg.threshold_high, self._top
        )
        self._results = [(self._labels[index], confidence) for confidence, index in self._top]
        if cfg.verbose:
            for label, confidence in self._results:
                logger.info("%s : %f", label, confidence)

    def apply_results(self, completed_request: CompletedRequest) -> None:
        metadata = completed_request.post_process_metadata
        metadata[RESULTS_KEY] = list(self._results)
        if self.config.display_labels:
            metadata[ANNOTATE_KEY] = format_annotation(self._results)