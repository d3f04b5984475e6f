"""Single-person pose estimation stage for a 257x257 heatmap network."""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from camstages.stage import CameraApp, CompletedRequest, register_stage
from camstages.tf_stage import ModelLoader, TfStage

FEATURE_SIZE = 17
HEATMAP_DIMS = 9
LOCATIONS_KEY = "pose_estimation.locations"
CONFIDENCES_KEY = "pose_estimation.confidences"


def interpret_pose(
    heatmaps: Any, offsets: Any, width: int, height: int
) -> tuple[list[tuple[int, int]], list[float]]:
    """Locate each body feature from the network's heatmaps and offsets.

    Returns the (x, y) location of every feature in an image of the given size,
    and the confidence of each.
    """
    cells = HEATMAP_DIMS * HEATMAP_DIMS
    hm = np.asarray(heatmaps).reshape(cells, FEATURE_SIZE)
    offs = np.asarray(offsets, dtype=np.float32).reshape(
        HEATMAP_DIMS, HEATMAP_DIMS, 2 * FEATURE_SIZE
    )
    # argmax keeps the first cell holding the maximum, as a strict-greater scan does.
    best = hm.argmax(axis=0)

    locations: list[tuple[int, int]] = []
    confidences: list[float] = []
    for feature, cell in enumerate(best):
        y, x = divmod(int(cell), HEATMAP_DIMS)
        confidences.append(float(hm[cell, feature]))
        loc_y = np.float32(y * height // (HEATMAP_DIMS - 1)) + offs[y, x, feature]
        loc_x = np.float32(x * width // (HEATMAP_DIMS - 1)) + offs[y, x, feature + FEATURE_SIZE]
        locations.append((int(loc_x), int(loc_y)))
    return locations, confidences


@register_stage("pose_estimation_tf")
class PoseEstimationTfStage(TfStage):
    """Estimate the positions of body joints in main stream coordinates."""

    def __init__(self, app: CameraApp, model_loader: ModelLoader | None = None) -> None:
        super().__init__(app, 257, 257, model_loader)
        self._locations: list[tuple[int, int]] = []
        self._confidences: list[float] = []

    def name(self) -> str:
        return "pose_estimation_tf"

    def read_extras(self, params: Mapping[str, Any]) -> None:
        shape = tuple(self.model.output_shape(0))[:4]
        if shape != (1, HEATMAP_DIMS, HEATMAP_DIMS, FEATURE_SIZE):
            raise RuntimeError("PoseEstimationTfStage: Unexpected output dimensions")

    def check_configuration(self) -> None:
        if not self.main_stream:
            raise RuntimeError("PoseEstimationTfStage: Main stream is required")

    def interpret_outputs(self) -> None:
        info = self.main_stream_info
        self._locations, self._confidences = interpret_pose(
            self.model.output(0), self.model.output(1), info.width, info.height
        )

    def apply_results(self, completed_request: CompletedRequest) -> None:
        metadata = completed_request.post_process_metadata
        metadata[LOCATIONS_KEY] = list(self._locations)
        metadata[CONFIDENCES_KEY] = list(self._confidences)