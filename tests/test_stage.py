import time

import pytest

from camstages.stage import (
    CameraApp,
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    execution_time,
    post_processing_stages,
    register_stage,
    yuv420_to_rgb,
)


def make_frame(width, height, y_fn, u_fn=lambda cx, cy: 128, v_fn=lambda cx, cy: 128):
    y_plane = bytes(y_fn(x, y) for y in range(height) for x in range(width))
    cw, ch = width // 2, height // 2
    u_plane = bytes(u_fn(cx, cy) for cy in range(ch) for cx in range(cw))
    v_plane = bytes(v_fn(cx, cy) for cy in range(ch) for cx in range(cw))
    return bytearray(y_plane + u_plane + v_plane)


def pixel(out, info, x, y):
    off = y * info.stride + x * 3
    return tuple(out[off : off + 3])


def test_grey_image_stays_grey():
    src = make_frame(4, 4, lambda x, y: 128)
    info = StreamInfo(4, 4, 4)
    dst = StreamInfo(4, 4, 12)
    out = yuv420_to_rgb(src, info, dst)
    assert out == bytearray([128]) * 48


def test_output_size_matches_destination():
    src = make_frame(8, 8, lambda x, y: 10)
    dst = StreamInfo(4, 2, 20)
    out = yuv420_to_rgb(src, StreamInfo(8, 8, 8), dst)
    assert len(out) == dst.height * dst.stride


def test_centre_crop_with_neutral_chroma():
    def y_fn(x, y):
        return 50 + x + 8 * y

    src = make_frame(8, 8, y_fn)
    dst = StreamInfo(4, 4, 12)
    out = yuv420_to_rgb(src, StreamInfo(8, 8, 8), dst)
    for y in range(4):
        for x in range(4):
            v = y_fn(x + 2, y + 2)
            assert pixel(out, dst, x, y) == (v, v, v)


def test_straggling_rows_and_columns():
    def y_fn(x, y):
        return 20 + 3 * x + 17 * y

    src = make_frame(8, 6, y_fn)
    dst = StreamInfo(5, 3, 16)
    out = yuv420_to_rgb(src, StreamInfo(8, 6, 8), dst)
    for y in range(3):
        for x in range(5):
            v = y_fn(x + 2, y + 2)
            assert pixel(out, dst, x, y) == (v, v, v)
        assert out[y * dst.stride + 15] == 0


def test_chroma_shared_by_pixel_pairs():
    src = make_frame(8, 8, lambda x, y: 128, u_fn=lambda cx, cy: 40 + 20 * cx)
    dst = StreamInfo(8, 8, 24)
    out = yuv420_to_rgb(src, StreamInfo(8, 8, 8), dst)
    for y in range(8):
        for x in range(8):
            assert pixel(out, dst, x, y) == pixel(out, dst, x ^ 1, y)
            assert pixel(out, dst, x, y) == pixel(out, dst, x, y ^ 1)
    blues = [pixel(out, dst, x, 0)[2] for x in range(0, 8, 2)]
    assert blues == sorted(blues)
    assert blues[0] < blues[-1]


def test_values_are_clamped():
    bright = make_frame(2, 2, lambda x, y: 255, u_fn=lambda *a: 0, v_fn=lambda *a: 255)
    out = yuv420_to_rgb(bright, StreamInfo(2, 2, 2), StreamInfo(2, 2, 6))
    r, g, b = pixel(out, StreamInfo(2, 2, 6), 0, 0)
    assert r == 255
    assert b == 0

    dark = make_frame(2, 2, lambda x, y: 0, u_fn=lambda *a: 0, v_fn=lambda *a: 0)
    out = yuv420_to_rgb(dark, StreamInfo(2, 2, 2), StreamInfo(2, 2, 6))
    r, g, b = pixel(out, StreamInfo(2, 2, 6), 1, 1)
    assert r == 0
    assert b == 0
    assert g == 91


def test_destination_larger_than_source_rejected():
    src = make_frame(4, 4, lambda x, y: 0)
    with pytest.raises(ValueError):
        yuv420_to_rgb(src, StreamInfo(4, 4, 4), StreamInfo(6, 4, 18))


def test_destination_stride_too_small_rejected():
    src = make_frame(4, 4, lambda x, y: 0)
    with pytest.raises(ValueError):
        yuv420_to_rgb(src, StreamInfo(4, 4, 4), StreamInfo(4, 4, 8))


def test_execution_time_calls_function():
    calls = []
    elapsed = execution_time(lambda *a, **k: calls.append((a, k)), 1, 2, k=3)
    assert calls == [((1, 2), {"k": 3})]
    assert elapsed >= 0.0


def test_execution_time_measures_sleep():
    elapsed = execution_time(time.sleep, 0.01)
    assert elapsed >= 0.01


class _Dummy(PostProcessingStage):
    def name(self):
        return "dummy_test_stage"

    def process(self, completed_request):
        completed_request.post_process_metadata["seen"] = completed_request.sequence
        return True


def test_register_stage_and_lookup():
    register_stage("dummy_test_stage")(_Dummy)
    stages = post_processing_stages()
    assert stages["dummy_test_stage"] is _Dummy
    stage = stages["dummy_test_stage"](CameraApp())
    req = CompletedRequest(sequence=7)
    assert stage.process(req) is True
    assert req.post_process_metadata["seen"] == 7


def test_registry_copy_is_independent():
    register_stage("dummy_copy_stage")(_Dummy)
    stages = post_processing_stages()
    del stages["dummy_copy_stage"]
    assert "dummy_copy_stage" in post_processing_stages()


def test_re_registration_replaces():
    class Other(_Dummy):
        pass

    register_stage("dummy_replace_stage")(_Dummy)
    register_stage("dummy_replace_stage")(Other)
    assert post_processing_stages()["dummy_replace_stage"] is Other


def test_base_class_is_abstract():
    with pytest.raises(TypeError):
        PostProcessingStage(CameraApp())


def test_default_adjust_config_leaves_config_alone():
    class Config:
        buffer_count = 2

    config = Config()
    stage = _Dummy(CameraApp())
    stage.adjust_config("still", config)
    assert config.buffer_count == 2
    assert stage.app == CameraApp()


def test_camera_app_stream_info():
    info = StreamInfo(64, 48, 64)
    app = CameraApp(streams={"lores": info}, lores="lores")
    assert app.lores_stream() == "lores"
    assert app.stream_info("lores") is info
    assert app.main_stream() is None
    with pytest.raises(KeyError):
        app.stream_info("missing")