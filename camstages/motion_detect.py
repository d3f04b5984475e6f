"""A simple motion detector working on the low resolution stream.

Pixels in a region of interest of the current low resolution image are compared
with the same pixels in the previous one; when enough of them differ by more
than a threshold, motion is reported as "motion_detect.result" in the
post-processing metadata.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from camstages.stage import CameraApp, CompletedRequest, PostProcessingStage, register_stage

logger = logging.getLogger(__name__)

RESULT_KEY = "motion_detect.result"


@dataclass
class MotionDetectConfig:
    """Motion detector settings; ROI dimensions are fractions of the lores image."""

    roi_x: float = 0.0
    roi_y: float = 0.0
    roi_width: float = 1.0
    roi_height: float = 1.0
    hskip: int = 1
    vskip: int = 1
    difference_m: float = 0.1
    difference_c: int = 10
    region_threshold: float = 0.005
    frame_period: int = 5
    verbose: bool = False


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


@register_stage("motion_detect")
class MotionDetectStage(PostProcessingStage):
    """Report whether the lores image has changed noticeably since the last checked frame."""

    def __init__(self, app: CameraApp) -> None:
        super().__init__(app)
        self.config = MotionDetectConfig()
        self._stream: str | None = None
        self._indices = np.zeros((0, 0), dtype=np.intp)
        self._region_threshold = 0
        self._previous = np.zeros((0, 0), dtype=np.int32)
        self._first_time = True
        self._motion_detected = False
        self._lock = threading.Lock()

    def name(self) -> str:
        return "motion_detect"

    def read(self, params: Mapping[str, Any]) -> None:
        defaults = MotionDetectConfig()
        self.config = MotionDetectConfig(
            roi_x=float(params.get("roi_x", defaults.roi_x)),
            roi_y=float(params.get("roi_y", defaults.roi_y)),
            roi_width=float(params.get("roi_width", defaults.roi_width)),
            roi_height=float(params.get("roi_height", defaults.roi_height)),
            hskip=int(params.get("hskip", defaults.hskip)),
            vskip=int(params.get("vskip", defaults.vskip)),
            difference_m=float(params.get("difference_m", defaults.difference_m)),
            difference_c=int(params.get("difference_c", defaults.difference_c)),
            region_threshold=float(params.get("region_threshold", defaults.region_threshold)),
            frame_period=int(params.get("frame_period", defaults.frame_period)),
            verbose=bool(int(params.get("verbose", 0))),
        )

    def configure(self) -> None:
        self._stream = self.app.lores_stream()
        if not self._stream:
            return
        info = self.app.stream_info(self._stream)
        cfg = self.config
        cfg.hskip = max(cfg.hskip, 1)
        cfg.vskip = max(cfg.vskip, 1)
        width = info.width // cfg.hskip
        height = info.height // cfg.vskip
        stride = info.stride * cfg.vskip

        # Pixel locations as if in an image subsampled by hskip and vskip.
        roi_x = max(int(cfg.roi_x * width), 0)
        roi_y = max(int(cfg.roi_y * height), 0)
        roi_width = max(int(cfg.roi_width * width), 0)
        roi_height = max(int(cfg.roi_height * height), 0)
        threshold = max(int(cfg.region_threshold * roi_width * roi_height), 0)

        roi_x = _clamp(roi_x, 0, width)
        roi_y = _clamp(roi_y, 0, height)
        roi_width = _clamp(roi_width, 0, width - roi_x)
        roi_height = _clamp(roi_height, 0, height - roi_y)
        self._region_threshold = _clamp(threshold, 0, roi_width * roi_height)

        if cfg.verbose:
            logger.info(
                "Lores: %dx%d roi: (%d,%d) %dx%d threshold: %d",
                width, height, roi_x, roi_y, roi_width, roi_height, self._region_threshold,
            )

        rows = (roi_y + np.arange(roi_height)) * stride + roi_x * cfg.hskip
        cols = np.arange(roi_width) * cfg.hskip
        self._indices = rows[:, None] + cols[None, :]
        self._previous = np.zeros((roi_height, roi_width), dtype=np.int32)
        self._first_time = True
        self._motion_detected = False

    def process(self, completed_request: CompletedRequest) -> bool:
        if not self._stream:
            return False
        period = self.config.frame_period
        if period and completed_request.sequence % period:
            return False

        image = np.frombuffer(completed_request.buffers[self._stream], dtype=np.uint8)
        current = image[self._indices].astype(np.int32)

        with self._lock:
            if self._first_time:
                self._first_time = False
                self._previous = current
                completed_request.post_process_metadata[RESULT_KEY] = self._motion_detected
                return False

            old = self._previous
            limit = self.config.difference_m * old + self.config.difference_c
            regions = int(np.count_nonzero(np.abs(current - old) > limit))
            self._previous = current
            motion_detected = current.size > 0 and regions >= self._region_threshold

            if self.config.verbose and motion_detected != self._motion_detected:
                logger.info("Motion %s", "detected" if motion_detected else "stopped")

            self._motion_detected = motion_detected
            completed_request.post_process_metadata[RESULT_KEY] = motion_detected

        return False