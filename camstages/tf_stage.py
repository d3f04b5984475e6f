"""Base class for stages that run a neural network on the low resolution stream.

The network itself is reached through an InferenceModel, produced by a model
loader given to the stage. Inference runs asynchronously every refresh_rate
frames; results are attached to every request as they become available.
"""

from __future__ import annotations

import abc
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import numpy as np

from camstages.stage import (
    CameraApp,
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    execution_time,
    yuv420_to_rgb,
)

logger = logging.getLogger(__name__)


@dataclass
class TfConfig:
    """Settings common to all network stages."""

    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5


class InferenceModel(abc.ABC):
    """A loaded network: one RGB input tensor and any number of output tensors."""

    num_threads: int | None = None

    @property
    @abc.abstractmethod
    def input_dtype(self) -> Any:
        """Element type of the input tensor."""

    @property
    @abc.abstractmethod
    def input_nbytes(self) -> int:
        """Size of the input tensor in bytes."""

    def set_num_threads(self, count: int) -> None:
        """Set the number of threads inference may use; recorded in num_threads."""
        self.num_threads = count

    @abc.abstractmethod
    def set_input(self, tensor: np.ndarray) -> None:
        """Fill the input tensor."""

    @abc.abstractmethod
    def invoke(self) -> None:
        """Run the network; raise on failure."""

    @abc.abstractmethod
    def output(self, index: int) -> np.ndarray:
        """Return output tensor number index, with its shape."""

    def output_shape(self, index: int) -> tuple[int, ...]:
        return tuple(np.shape(self.output(index)))


ModelLoader = Callable[[str], Optional[InferenceModel]]


class TfStage(PostProcessingStage):
    """Runs a network on the lores stream; subclasses interpret and apply the outputs."""

    config_class: type[TfConfig] = TfConfig

    def __init__(
        self, app: CameraApp, tf_w: int, tf_h: int, model_loader: ModelLoader | None = None
    ) -> None:
        super().__init__(app)
        if tf_w <= 0 or tf_h <= 0:
            raise RuntimeError("TfStage: Bad TFLite input dimensions")
        self.tf_w = tf_w
        self.tf_h = tf_h
        self.config = self.config_class()
        self.model_loader = model_loader
        self.model: InferenceModel | None = None
        self.lores_stream: str | None = None
        self.lores_info = StreamInfo()
        self.main_stream: str | None = None
        self.main_stream_info = StreamInfo()
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tf-inference")
        self._future: Future | None = None
        self._lores_copy = b""

    def read(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_threads = int(params.get("number_of_threads", 2))
        cfg.refresh_rate = int(params.get("refresh_rate", 5))
        cfg.model_file = str(params.get("model_file", ""))
        cfg.verbose = bool(int(params.get("verbose", 0)))
        cfg.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        cfg.normalisation_scale = float(params.get("normalisation_scale", 127.5))

        self._initialise()
        self.read_extras(params)

    def _initialise(self) -> None:
        if self.model_loader is None:
            raise RuntimeError("TfStage: no model loader available")
        try:
            model = self.model_loader(self.config.model_file)
        except OSError as exc:
            raise RuntimeError("TfStage: Failed to load model") from exc
        if model is None:
            raise RuntimeError("TfStage: Failed to load model")
        logger.info("TfStage: Loaded model %s", self.config.model_file)

        if self.config.number_of_threads != -1:
            model.set_num_threads(self.config.number_of_threads)

        dtype = np.dtype(model.input_dtype)
        if dtype == np.uint8 or dtype == np.float32:
            expected = self.tf_w * self.tf_h * 3 * dtype.itemsize  # assume RGB
        else:
            raise RuntimeError("TfStage: Input tensor data type not supported")
        if expected != model.input_nbytes:
            raise RuntimeError("TfStage: Input tensor size mismatch")
        self.model = model

    def configure(self) -> None:
        verbose = self.config.verbose
        self.lores_stream = self.app.lores_stream()
        if self.lores_stream:
            self.lores_info = self.app.stream_info(self.lores_stream)
            if verbose:
                logger.info(
                    "TfStage: Low resolution stream is %dx%d",
                    self.lores_info.width, self.lores_info.height,
                )
            if self.tf_w > self.lores_info.width or self.tf_h > self.lores_info.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                self.lores_stream = None
        elif verbose:
            logger.info("TfStage: no low resolution stream")

        self.main_stream = self.app.main_stream()
        if self.main_stream:
            self.main_stream_info = self.app.stream_info(self.main_stream)
            if verbose:
                logger.info(
                    "TfStage: Main stream is %dx%d",
                    self.main_stream_info.width, self.main_stream_info.height,
                )
        elif verbose:
            logger.info("TfStage: No main stream")

        self.check_configuration()

    def process(self, completed_request: CompletedRequest) -> bool:
        if not self.lores_stream:
            return False

        with self._future_lock:
            rate = self.config.refresh_rate
            idle = self._future is None or self._future.done()
            if rate and completed_request.sequence % rate == 0 and idle:
                # Take a copy so the worker reads cached memory, not the capture buffer.
                self._lores_copy = bytes(completed_request.buffers[self.lores_stream])
                self._future = self._executor.submit(self._timed_inference)

        with self._output_lock:
            self.apply_results(completed_request)
        return False

    def _timed_inference(self) -> None:
        elapsed = execution_time(self.run_inference)
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.3f ms", elapsed * 1000)

    def run_inference(self) -> None:
        """Convert the lores copy to RGB, run the network and interpret its outputs."""
        if self.model is None:
            raise RuntimeError("TfStage: no model loaded")
        tf_info = StreamInfo(self.tf_w, self.tf_h, self.tf_w * 3)
        rgb = np.frombuffer(yuv420_to_rgb(self._lores_copy, self.lores_info, tf_info), dtype=np.uint8)

        if np.dtype(self.model.input_dtype) == np.uint8:
            tensor = rgb.copy()
        else:
            cfg = self.config
            tensor = (
                (rgb.astype(np.float32) - np.float32(cfg.normalisation_offset))
                / np.float32(cfg.normalisation_scale)
            ).astype(np.float32)
        self.model.set_input(tensor)
        self.model.invoke()

        with self._output_lock:
            self.interpret_outputs()

    def stop(self) -> None:
        """Wait for any inference in flight; errors it raised are raised here."""
        with self._future_lock:
            future = self._future
        if future is not None:
            future.result()

    def read_extras(self, params: Mapping[str, Any]) -> None:
        """Read stage-specific parameters and check the model."""

    def check_configuration(self) -> None:
        """Check the stream configuration; raise if the stage cannot run."""

    def interpret_outputs(self) -> None:
        """Turn the model's outputs into results; runs on the inference thread."""

    def apply_results(self, completed_request: CompletedRequest) -> None:
        """Attach the latest results to a request."""