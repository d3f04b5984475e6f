import numpy as np
import pytest

from camstages.object_classify import (
    ObjectClassifyTfStage,
    format_annotation,
    read_classify_labels,
    top_results,
)
from camstages.stage import CameraApp, CompletedRequest
from camstages.tf_stage import InferenceModel


class FakeModel(InferenceModel):
    def __init__(self, outputs):
        self.outputs = outputs

    @property
    def input_dtype(self):
        return np.uint8

    @property
    def input_nbytes(self):
        return 224 * 224 * 3

    def set_input(self, tensor):
        self.tensor = tensor

    def invoke(self):
        pass

    def output(self, index):
        return self.outputs[index]


def make_stage(tmp_path, labels, output):
    path = tmp_path / "labels.txt"
    path.write_text("".join(f"{label}\n" for label in labels))
    model = FakeModel([np.asarray(output, dtype=np.uint8)])
    stage = ObjectClassifyTfStage(CameraApp(), model_loader=lambda name: model)
    stage.read({"model_file": "model.tflite", "labels_file": str(path)})
    return stage, model


def test_read_labels(tmp_path):
    path = tmp_path / "labels.txt"
    path.write_text("a\nb\nc\n")
    assert read_classify_labels(str(path)) == ["a", "b", "c"]


def test_read_labels_missing(tmp_path):
    with pytest.raises(RuntimeError):
        read_classify_labels(str(tmp_path / "missing.txt"))


def test_top_results_order_and_thresholds():
    result = top_results([0, 255, 128, 30, 100], 3, 0.1, 0.2)
    assert [index for _, index in result] == [1, 2, 4]
    assert result[0][0] == pytest.approx(1.0)
    confidences = [c for c, _ in result]
    assert confidences == sorted(confidences, reverse=True)


def test_top_results_keeps_previous_above_low():
    result = top_results([0, 255, 128, 30, 100], 4, 0.1, 0.2, previous=[(0.5, 3)])
    assert [index for _, index in result] == [1, 2, 4, 3]


def test_top_results_limit():
    assert [i for _, i in top_results([0, 255, 128, 30, 100], 1, 0.1, 0.2)] == [1]
    assert top_results([0, 255], 0, 0.1, 0.2) == []


def test_format_annotation():
    text = format_annotation([("n01 tench, Tinca tinca", 0.5), ("plain", 0.25)])
    assert text == "Detected: tench 0.5, plain 0.25"


def test_format_annotation_empty():
    assert format_annotation([]) == "Detected: "


def test_read_label_count_mismatch(tmp_path):
    with pytest.raises(RuntimeError):
        make_stage(tmp_path, ["a", "b", "c"], [[0, 0, 0, 0]])


def test_interpret_and_apply(tmp_path):
    labels = ["0:cat", "1:dog, hound", "2:bird", "3:fish", "4:frog"]
    stage, _ = make_stage(tmp_path, labels, [[0, 255, 128, 30, 100]])
    stage.interpret_outputs()
    request = CompletedRequest()
    stage.apply_results(request)
    results = request.post_process_metadata["object_classify.results"]
    assert [label for label, _ in results] == ["1:dog, hound", "2:bird", "4:frog"]
    assert request.post_process_metadata["annotate.text"].startswith("Detected: dog 1")


def test_no_labels_display(tmp_path):
    path = tmp_path / "labels.txt"
    path.write_text("a\nb\n")
    model = FakeModel([np.array([[255, 0]], dtype=np.uint8)])
    stage = ObjectClassifyTfStage(CameraApp(), model_loader=lambda name: model)
    stage.read({"labels_file": str(path), "display_labels": 0})
    stage.interpret_outputs()
    request = CompletedRequest()
    stage.apply_results(request)
    assert "annotate.text" not in request.post_process_metadata
    assert [label for label, _ in request.post_process_metadata["object_classify.results"]] == ["a"]