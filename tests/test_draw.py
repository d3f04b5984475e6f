import numpy as np
import pytest

from camstages.detection import Detection, Rectangle
from camstages.draw import Feature, ObjectDetectDrawStage, PlotPoseStage, pose_segments
from camstages.stage import CameraApp, CompletedRequest, StreamInfo

WIDTH, HEIGHT, STRIDE = 64, 48, 72


def _app(with_lores=True, with_main=True):
    streams = {"main": StreamInfo(WIDTH, HEIGHT, STRIDE)}
    if with_lores:
        streams["lores"] = StreamInfo(32, 24, 32)
    return CameraApp(
        streams=streams,
        main="main" if with_main else None,
        lores="lores" if with_lores else None,
    )


def _buffer():
    return bytearray(STRIDE * HEIGHT * 3 // 2)


def _luma(buf):
    return np.frombuffer(bytes(buf), dtype=np.uint8)[: STRIDE * HEIGHT].reshape(HEIGHT, STRIDE)


def _request(buf, **metadata):
    return CompletedRequest(sequence=0, buffers={"main": buf}, post_process_metadata=dict(metadata))


def test_pose_segments_all_confident():
    segments = pose_segments([1.0] * 17, 0.5)
    assert len(segments) == 12
    assert segments[0] == (Feature.LEFT_SHOULDER, Feature.RIGHT_SHOULDER)
    assert segments[-1] == (Feature.RIGHT_KNEE, Feature.RIGHT_ANKLE)


def test_pose_segments_none_confident():
    assert pose_segments([0.0] * 17, 0.5) == []


def test_pose_segments_single_pair():
    conf = [0.0] * 17
    conf[Feature.LEFT_SHOULDER] = 0.9
    conf[Feature.LEFT_ELBOW] = 0.9
    assert pose_segments(conf, 0.5) == [(Feature.LEFT_SHOULDER, Feature.LEFT_ELBOW)]


def test_pose_segments_follow_feature_order():
    conf = [0.0] * 17
    conf[11] = 0.9  # left hip
    conf[13] = 0.9  # left knee
    assert pose_segments(conf, 0.5) == [(Feature.LEFT_HIP, Feature.LEFT_KNEE)]


def test_detect_draw_names_and_defaults():
    stage = ObjectDetectDrawStage(_app())
    assert stage.name() == "object_detect_draw_cv"
    stage.read({})
    assert stage.line_thickness == 1
    assert stage.font_size == 1.0
    stage.read({"line_thickness": 3, "font_size": 0.5})
    assert stage.line_thickness == 3
    assert stage.font_size == 0.5


def test_detect_draw_without_lores_leaves_image():
    stage = ObjectDetectDrawStage(_app(with_lores=False))
    stage.configure()
    buf = _buffer()
    det = Detection(1, "cat", 0.5, Rectangle(10, 10, 40, 30))
    assert stage.process(_request(buf, **{"object_detect.results": [det]})) is False
    assert not any(buf)


def test_detect_draw_no_detections_leaves_image():
    stage = ObjectDetectDrawStage(_app())
    stage.configure()
    buf = _buffer()
    assert stage.process(_request(buf)) is False
    assert not any(buf)


def test_detect_draw_box():
    stage = ObjectDetectDrawStage(_app())
    stage.read({})
    stage.configure()
    buf = _buffer()
    det = Detection(1, "cat", 0.5, Rectangle(10, 10, 40, 30))
    assert stage.process(_request(buf, **{"object_detect.results": [det]})) is False
    luma = _luma(buf)
    assert luma[10, 30] == 255
    assert luma[39, 49] == 255
    assert luma[39, 10] == 255
    assert luma[35, 40] == 0
    assert luma[0, 0] == 0
    assert not luma[:, WIDTH:].any()
    assert not any(buf[STRIDE * HEIGHT :])


def test_plot_pose_names_and_defaults():
    stage = PlotPoseStage(_app())
    assert stage.name() == "plot_pose_cv"
    stage.read({})
    assert stage.confidence_threshold == -1.0
    stage.read({"confidence_threshold": 0.25})
    assert stage.confidence_threshold == 0.25


def test_plot_pose_without_results_leaves_image():
    stage = PlotPoseStage(_app())
    stage.configure()
    buf = _buffer()
    assert stage.process(_request(buf)) is False
    assert not any(buf)


def test_plot_pose_without_main_stream():
    stage = PlotPoseStage(_app(with_main=False))
    stage.configure()
    buf = _buffer()
    req = _request(
        buf,
        **{"pose_estimation.locations": [(20, 20)] * 17, "pose_estimation.confidences": [0.0] * 17},
    )
    assert stage.process(req) is False
    assert not any(buf)


def test_plot_pose_circles_for_low_confidence():
    stage = PlotPoseStage(_app())
    stage.read({"confidence_threshold": 0.5})
    stage.configure()
    buf = _buffer()
    req = _request(
        buf,
        **{"pose_estimation.locations": [(20, 20)] * 17, "pose_estimation.confidences": [0.0] * 17},
    )
    assert stage.process(req) is False
    luma = _luma(buf)
    assert luma[15, 20] == 255
    assert luma[25, 20] == 255
    assert luma[20, 20] == 0


def test_plot_pose_lines_for_high_confidence():
    stage = PlotPoseStage(_app())
    stage.read({"confidence_threshold": 0.5})
    stage.configure()
    buf = _buffer()
    locations = [(10, 10)] * 17
    locations[Feature.RIGHT_SHOULDER] = (50, 10)
    req = _request(
        buf,
        **{"pose_estimation.locations": locations, "pose_estimation.confidences": [1.0] * 17},
    )
    assert stage.process(req) is False
    luma = _luma(buf)
    assert luma[10, 30] == 255
    assert luma[30, 30] == 0


def test_plot_pose_too_few_features():
    stage = PlotPoseStage(_app())
    stage.configure()
    req = _request(
        _buffer(),
        **{"pose_estimation.locations": [(1, 1)], "pose_estimation.confidences": [1.0]},
    )
    with pytest.raises(ValueError):
        stage.process(req)