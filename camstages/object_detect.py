"""Object detection stage for a 300x300 single-shot detector network."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from camstages.detection import Detection, Rectangle
from camstages.stage import CameraApp, CompletedRequest, register_stage
from camstages.tf_stage import ModelLoader, TfConfig, TfStage

logger = logging.getLogger(__name__)

WIDTH = 300
HEIGHT = 300
RESULTS_KEY = "object_detect.results"


@dataclass
class ObjectDetectTfConfig(TfConfig):
    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


def _read_lines(path: str) -> list[str]:
    with open(path, encoding="utf-8", newline="") as f:
        lines = f.read().split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def read_detection_labels(path: str) -> list[str]:
    """Read a labels file, one label per line; the first line is a header and is skipped."""
    try:
        lines = _read_lines(path)
    except OSError as exc:
        raise RuntimeError("ObjectDetectTfStage: Failed to load labels file") from exc
    return lines[1:]


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


@register_stage("object_detect_tf")
class ObjectDetectTfStage(TfStage):
    """Find objects in the lores image and report them in main stream coordinates."""

    config_class = ObjectDetectTfConfig

    def __init__(self, app: CameraApp, model_loader: ModelLoader | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, model_loader)
        self._labels: list[str] = []
        self._results: list[Detection] = []

    def name(self) -> str:
        return "object_detect_tf"

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        cfg.overlap_threshold = float(params.get("overlap_threshold", 0.5))

        self._labels = read_detection_labels(str(params.get("labels_file", "")))
        if cfg.verbose:
            logger.info("Read %d labels", len(self._labels))

        # A mismatch usually means the wrong model was loaded.
        if tuple(self.model.output_shape(0)) != (1, 10, 4):
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def check_configuration(self) -> None:
        if not self.main_stream:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def apply_results(self, completed_request: CompletedRequest) -> None:
        completed_request.post_process_metadata[RESULTS_KEY] = list(self._results)

    def _to_main_coordinates(self, box: np.ndarray) -> Rectangle:
        top, left, bottom, right = (float(v) for v in box)
        y = _clamp(int(HEIGHT * top), 0, HEIGHT)
        x = _clamp(int(WIDTH * left), 0, WIDTH)
        h = _clamp(int(HEIGHT * bottom - y), 0, HEIGHT)
        w = _clamp(int(WIDTH * right - x), 0, WIDTH)
        lores, main = self.lores_info, self.main_stream_info
        # The network sees a centre crop of the lores image...
        y += (lores.height - HEIGHT) // 2
        x += (lores.width - WIDTH) // 2
        # ...and the lores image is a plain scaling of the main one.
        y = y * main.height // lores.height
        x = x * main.width // lores.width
        h = h * main.height // lores.height
        w = w * main.width // lores.width
        return Rectangle(x, y, w, h)

    def interpret_outputs(self) -> None:
        boxes = np.asarray(self.model.output(0))
        num_detections = boxes.shape[1]
        boxes = boxes.reshape(-1, 4)[:num_detections]
        classes = np.ravel(self.model.output(1))[:num_detections]
        scores = np.ravel(self.model.output(2))[:num_detections]
        cfg = self.config

        results: list[Detection] = []
        for box, cls, score in zip(boxes, classes, scores):
            confidence = float(score)
            if confidence < cfg.confidence_threshold:
                continue
            category = int(cls)
            detection = Detection(
                category, self._labels[category], confidence, self._to_main_coordinates(box)
            )
            new_area = detection.box.area()
            for index, prev in enumerate(results):
                if prev.category != category:
                    continue
                prev_area = prev.box.area()
                overlap = prev.box.bounded_to(detection.box).area()
                if (
                    overlap > cfg.overlap_threshold * prev_area
                    or overlap > cfg.overlap_threshold * new_area
                ):
                    if detection.confidence > prev.confidence:
                        results[index] = detection
                    break
            else:
                results.append(detection)

        self._results = results
        if cfg.verbose:
            for detection in results:
                logger.info("%s", detection)