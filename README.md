# camstages

Post-processing stages for camera frames held as planar YUV420 buffers.
Each stage reads its settings from a plain dictionary. It is then
configured against the streams that a camera application offers, and
after that it processes completed requests one at a time. A stage can
change the image in place, attach entries to the request's
post-processing metadata, or return `True` to ask for the frame to be
dropped.

## Modules

- `camstages.pwl`: piecewise linear functions.
  - `Pwl` supports evaluation (`eval`, `eval_span`), `compose`,
    `combine`, `map`, `map2`, `invert`, `match_domain`, `scale` and
    `generate_lut`.
  - It comes with the helper types `Point`, `Interval` and `PerpType`.
- `camstages.stage`: the framework.
  - The `PostProcessingStage` base class.
  - The `StreamInfo`, `CompletedRequest` and `CameraApp` types.
  - `yuv420_to_rgb`, which converts to packed RGB and crops from the
    centre.
  - `execution_time`.
  - The stage registry: `register_stage` and `post_processing_stages`.
- `camstages.negate`: `NegateStage`. It inverts every byte of the main
  image.
- `camstages.motion_detect`: `MotionDetectStage` and
  `MotionDetectConfig`.
  - The stage compares a region of interest of the low resolution image
    with the same region in the previous checked frame.
  - It sets `"motion_detect.result"` in the metadata.
- `camstages.detection`: result types shared by the stages, namely
  `Rectangle`, `Detection` and `Segmentation`.
- `camstages.tf_stage`: the base for network stages.
  - `TfStage` and `TfConfig`.
  - The abstract `InferenceModel` interface that a model loader returns.
- Network stages built on `TfStage`:
  - `ObjectDetectTfStage` (`camstages.object_detect`)
  - `ObjectClassifyTfStage` (`camstages.object_classify`), which also
    provides `top_results` and `format_annotation`
  - `PoseEstimationTfStage` (`camstages.pose_estimation`), which also
    provides `interpret_pose`
  - `SegmentationTfStage` (`camstages.segmentation`)
- `camstages.draw`: drawing stages. They draw in white on the luma plane.
  - `ObjectDetectDrawStage`
  - `PlotPoseStage`, together with `Feature` and `pose_segments`

## Installing

```
pip install camstages
```

To run the tests:

```
pip install "camstages[test]"
pytest
```

## Examples

Piecewise linear functions:

```python
from camstages.pwl import Pwl

curve = Pwl.from_flat([0, 0, 10, 20, 20, 20])
print(curve.eval(5))            # 10.0
print(curve.generate_lut(int))  # values at 0, 1, ..., 20
```

A stage run by hand:

```python
from camstages.stage import CameraApp, CompletedRequest, StreamInfo
from camstages.motion_detect import MotionDetectStage

app = CameraApp(streams={"lores": StreamInfo(8, 8, 8)}, lores="lores")
stage = MotionDetectStage(app)
stage.read({"frame_period": 0})
stage.configure()

for sequence, value in enumerate((0, 255)):
    request = CompletedRequest(sequence, buffers={"lores": bytearray([value]) * 96})
    stage.process(request)
    print(request.post_process_metadata["motion_detect.result"])  # False, then True
```

A stage registers itself by name when its module is imported:

```python
import camstages.negate, camstages.motion_detect
from camstages.stage import post_processing_stages

print(sorted(post_processing_stages()))  # ['motion_detect', 'negate']
```

## What the package does not do

- It does not talk to a camera. The frames, the stream layouts and the
  requests come from the caller, through `CameraApp` and
  `CompletedRequest`.
- It contains no network runtime. To use a network stage, you pass it a
  model loader that returns your own `InferenceModel` implementation.
- It has no preview or display window.
- It does no HDR or tone-mapping processing.
- It has no command-line program.