"""Post-processing stage framework: stream descriptions, requests, the stage base class and registry."""

from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import numpy as np


@dataclass
class StreamInfo:
    """Geometry and format of an image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    pixel_format: str = "YUV420"
    colour_space: str | None = None


@dataclass
class CompletedRequest:
    """A captured frame: its image buffers, camera metadata and post-processing metadata."""

    sequence: int = 0
    buffers: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    post_process_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CameraApp:
    """The application context a stage runs in: the streams available and their layout."""

    streams: dict[str, StreamInfo] = field(default_factory=dict)
    main: str | None = None
    lores: str | None = None
    still: str | None = None
    options: Any = None
    camera_id: int = 0

    def main_stream(self) -> str | None:
        return self.main

    def lores_stream(self) -> str | None:
        return self.lores

    def still_stream(self) -> str | None:
        return self.still

    def stream_info(self, stream: str) -> StreamInfo:
        try:
            return self.streams[stream]
        except KeyError:
            raise KeyError(f"unknown stream {stream!r}") from None


class PostProcessingStage(abc.ABC):
    """Base class for a stage that inspects or modifies completed requests."""

    def __init__(self, app: CameraApp) -> None:
        self.app = app
        self.use_case: str | None = None
        self.running = False

    @abc.abstractmethod
    def name(self) -> str:
        """The name the stage is registered under."""

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters."""

    def adjust_config(self, use_case: str, config: Any) -> None:
        """Adjust a stream configuration before the camera is configured.

        The base stage leaves the configuration alone and records the use case.
        """
        self.use_case = use_case

    def configure(self) -> None:
        """Prepare for the configured streams."""

    def start(self) -> None:
        """Called when the camera starts."""
        self.running = True

    @abc.abstractmethod
    def process(self, completed_request: CompletedRequest) -> bool:
        """Process a request; return True if it is to be dropped."""

    def stop(self) -> None:
        """Called when the camera stops."""
        self.running = False

    def teardown(self) -> None:
        """Release anything acquired in configure."""
        self.running = False
        self.use_case = None


def yuv420_to_rgb(src: Any, src_info: StreamInfo, dst_info: StreamInfo) -> bytearray:
    """Convert a YUV420 image to packed RGB, cropping from the centre if the source is larger."""
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("yuv420_to_rgb: destination is larger than source")
    if dst_info.stride < dst_info.width * 3:
        raise ValueError("yuv420_to_rgb: destination stride too small")

    data = np.frombuffer(src, dtype=np.uint8)
    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    y_size = src_info.height * src_info.stride
    chroma_stride = src_info.stride // 2
    u_size = (src_info.height // 2) * chroma_stride

    rows = np.arange(dst_info.height) + off_y
    cols = np.arange(dst_info.width) + off_x
    y_idx = rows[:, None] * src_info.stride + cols[None, :]
    u_idx = y_size + (rows // 2)[:, None] * chroma_stride + (cols // 2)[None, :]
    try:
        y = data[y_idx].astype(np.float64)
        u = data[u_idx].astype(np.float64) - 128
        v = data[u_idx + u_size].astype(np.float64) - 128
    except IndexError:
        raise ValueError("yuv420_to_rgb: source buffer too small") from None

    r = np.trunc(y + 1.402 * v)
    g = np.trunc(y - 0.345 * u - 0.714 * v)
    b = np.trunc(y + 1.771 * u)
    rgb = np.clip(np.stack([r, g, b], axis=-1), 0, 255).astype(np.uint8)

    out = np.zeros((dst_info.height, dst_info.stride), dtype=np.uint8)
    out[:, : dst_info.width * 3] = rgb.reshape(dst_info.height, dst_info.width * 3)
    return bytearray(out.tobytes())


def execution_time(f: Callable[..., Any], *args: Any, **kwargs: Any) -> float:
    """Call f with the given arguments and return the time it took, in seconds."""
    start = time.perf_counter()
    f(*args, **kwargs)
    return time.perf_counter() - start


StageFactory = Callable[[CameraApp], PostProcessingStage]

_STAGES: dict[str, StageFactory] = {}


def register_stage(name: str) -> Callable[[StageFactory], StageFactory]:
    """Decorator registering a stage factory (usually the class) under a name."""

    def decorator(factory: StageFactory) -> StageFactory:
        _STAGES[name] = factory
        return factory

    return decorator


def post_processing_stages() -> dict[str, StageFactory]:
    """Return a copy of the registered stage factories, by name."""
    return dict(_STAGES)