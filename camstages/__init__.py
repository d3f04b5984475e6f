"""Post-processing stages for YUV420 camera frames: motion detection, negation, network result handling and drawing."""

__version__ = "0.1.0"