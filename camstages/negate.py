"""A stage that inverts every byte of the main image."""

from __future__ import annotations

import numpy as np

from camstages.stage import CameraApp, CompletedRequest, PostProcessingStage, register_stage


@register_stage("negate")
class NegateStage(PostProcessingStage):
    """Negate the main stream's image in place."""

    def __init__(self, app: CameraApp) -> None:
        super().__init__(app)
        self._stream: str | None = None

    def name(self) -> str:
        return "negate"

    def configure(self) -> None:
        self._stream = self.app.main_stream()

    def process(self, completed_request: CompletedRequest) -> bool:
        buffer = completed_request.buffers[self._stream]
        pixels = np.frombuffer(buffer, dtype=np.uint8)
        np.bitwise_xor(pixels, 0xFF, out=pixels)
        return False