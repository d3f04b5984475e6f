"""Stages that draw detection and pose estimation results onto the main image.

Drawing is done on the luma plane of a YUV420 image, so everything is drawn in
white.
"""

from __future__ import annotations

import enum
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from camstages.detection import Detection
from camstages.stage import (
    CameraApp,
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    register_stage,
)

DETECTIONS_KEY = "object_detect.results"
LOCATIONS_KEY = "pose_estimation.locations"
CONFIDENCES_KEY = "pose_estimation.confidences"

_WHITE = 255
_BASE_FONT_PIXELS = 13


@contextmanager
def _luma_canvas(buffer: Any, info: StreamInfo) -> Iterator[ImageDraw.ImageDraw]:
    """Yield a drawing context for the luma plane; the drawing is written back on exit."""
    data = np.frombuffer(buffer, dtype=np.uint8)
    if data.size < info.height * info.stride:
        raise ValueError("buffer too small for the stream")
    plane = data[: info.height * info.stride].reshape(info.height, info.stride)[:, : info.width]
    image = Image.fromarray(np.ascontiguousarray(plane))
    yield ImageDraw.Draw(image)
    plane[:] = np.asarray(image, dtype=np.uint8)


def _load_font(font_size: float) -> Any:
    try:
        return ImageFont.load_default(size=max(1, round(_BASE_FONT_PIXELS * font_size)))
    except TypeError:
        return ImageFont.load_default()


def _label_text(detection: Detection) -> str:
    return f"{detection.name} {int(detection.confidence * 100)}%"


@register_stage("object_detect_draw_cv")
class ObjectDetectDrawStage(PostProcessingStage):
    """Draw boxes and labels for the detections found by the object detector."""

    def __init__(self, app: CameraApp) -> None:
        super().__init__(app)
        self._stream: str | None = None
        self.line_thickness = 1
        self.font_size = 1.0

    def name(self) -> str:
        return "object_detect_draw_cv"

    def read(self, params: Mapping[str, Any]) -> None:
        self.line_thickness = int(params.get("line_thickness", 1))
        self.font_size = float(params.get("font_size", 1.0))

    def configure(self) -> None:
        # Only draw when a low resolution stream is in use.
        self._stream = self.app.main_stream() if self.app.lores_stream() else None

    def process(self, completed_request: CompletedRequest) -> bool:
        if not self._stream:
            return False
        detections: Sequence[Detection] = completed_request.post_process_metadata.get(
            DETECTIONS_KEY, []
        )
        if not detections:
            return False

        info = self.app.stream_info(self._stream)
        font = _load_font(self.font_size)
        with _luma_canvas(completed_request.buffers[self._stream], info) as draw:
            for detection in detections:
                box = detection.box
                draw.rectangle(
                    (box.x, box.y, box.x + box.width - 1, box.y + box.height - 1),
                    outline=_WHITE,
                    width=max(self.line_thickness, 1),
                )
                text = _label_text(detection)
                left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
                text_height = bottom - top
                # The text's baseline sits text_height + 5 below the box's top edge.
                baseline_y = box.y + text_height + 5
                draw.text((box.x + 5, baseline_y - text_height - top), text, fill=_WHITE, font=font)
        return False


class Feature(enum.IntEnum):
    """Body features reported by the pose estimator, in the order it reports them."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


FEATURE_SIZE = len(Feature)

_SKELETON: tuple[tuple[Feature, Feature], ...] = (
    (Feature.LEFT_SHOULDER, Feature.RIGHT_SHOULDER),
    (Feature.LEFT_SHOULDER, Feature.LEFT_ELBOW),
    (Feature.LEFT_SHOULDER, Feature.LEFT_HIP),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_ELBOW),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_HIP),
    (Feature.LEFT_ELBOW, Feature.LEFT_WRIST),
    (Feature.RIGHT_ELBOW, Feature.RIGHT_WRIST),
    (Feature.LEFT_HIP, Feature.RIGHT_HIP),
    (Feature.LEFT_HIP, Feature.LEFT_KNEE),
    (Feature.LEFT_KNEE, Feature.LEFT_ANKLE),
    (Feature.RIGHT_KNEE, Feature.RIGHT_HIP),
    (Feature.RIGHT_KNEE, Feature.RIGHT_ANKLE),
)


def pose_segments(
    confidences: Sequence[float], threshold: float
) -> list[tuple[Feature, Feature]]:
    """The skeleton lines to draw: those whose two ends are both above the threshold."""
    return [
        (a, b)
        for a, b in _SKELETON
        if confidences[a] > threshold and confidences[b] > threshold
    ]


@register_stage("plot_pose_cv")
class PlotPoseStage(PostProcessingStage):
    """Draw the pose estimator's features and skeleton onto the main image."""

    def __init__(self, app: CameraApp) -> None:
        super().__init__(app)
        self._stream: str | None = None
        self.confidence_threshold = -1.0

    def name(self) -> str:
        return "plot_pose_cv"

    def read(self, params: Mapping[str, Any]) -> None:
        self.confidence_threshold = float(params.get("confidence_threshold", -1.0))

    def configure(self) -> None:
        self._stream = self.app.main_stream()

    def process(self, completed_request: CompletedRequest) -> bool:
        if not self._stream:
            return False
        metadata = completed_request.post_process_metadata
        locations = list(metadata.get(LOCATIONS_KEY, []))
        confidences = list(metadata.get(CONFIDENCES_KEY, []))
        if not locations or not confidences:
            return False
        if len(locations) < FEATURE_SIZE or len(confidences) < FEATURE_SIZE:
            raise ValueError("PlotPoseStage: too few pose features")

        info = self.app.stream_info(self._stream)
        threshold = self.confidence_threshold
        radius = 5
        with _luma_canvas(completed_request.buffers[self._stream], info) as draw:
            for feature in Feature:
                if confidences[feature] < threshold:
                    x, y = locations[feature]
                    draw.ellipse(
                        (x - radius, y - radius, x + radius, y + radius), outline=_WHITE, width=2
                    )
            for a, b in pose_segments(confidences, threshold):
                draw.line((tuple(locations[a]), tuple(locations[b])), fill=_WHITE, width=2)
        return False