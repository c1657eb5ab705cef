# embedmot

Multi-object tracking for footage from a static camera. Moving objects are
found by two- and three-frame differencing, combined with a running
background model once it has seen enough frames. Each detection is matched
greedily to a pool of kernelized correlation filter (KCF) trackers that use
FHOG and Lab colour features. An APCE confidence check decides when a
tracker's model and stored appearance are updated.

## Installation

```
pip install .
```

The package needs numpy, scipy, imageio and pillow.

## Command line

```
embedmot [SOURCE] [-o OUTPUT]
```

`SOURCE` may be:

- a camera index (a value starting with digits, such as `0`);
- a video file;
- a directory of images, read in name order;
- a printf-style numbered image pattern such as `img1/%06d.jpg`. The first
  index found between 0 and 999 starts the sequence, which stops at the
  first missing number.

Without `SOURCE` the pattern `../PETS09-S2L1/img1/%06d.jpg` is used. Cameras
and video files are read through `imageio`, so they need an imageio plugin
that can handle them.

With `-o OUTPUT`, every frame after the first is annotated and saved to that
directory as `000000.png`, `000001.png`, and so on:

- fresh detections are drawn in blue;
- running trackers are drawn in red, with their id and their APCE and peak
  values as text.

The command exits with status 1 and a message on standard error when the
source cannot be opened.

## Library use

```python
from embedmot.pipeline import iter_frames, mot
from embedmot.detect import ObjectDetector
from embedmot.track import ObjectTracker

# Whole pipeline in one call:
mot("img1/%06d.jpg", "annotated")

# Or step by step:
frames = iter_frames("img1/%06d.jpg")
first = next(frames)
detector = ObjectDetector(first, 2)
tracker = ObjectTracker(20, 0.5)

for frame in frames:
    if detector.tick(frame):
        tracker.add_background_response(detector.background_response())
        tracker.tick(frame, detector.objects)
    else:
        tracker.add_background_response(detector.background_response())
        tracker.tick(frame)
    detector.add_tracked_rois(tracker.rois())
```

Frames are numpy arrays in BGR channel order with dtype `uint8`.
`Tracking.update` draws its annotations into the frame it is given.

### Modules

- `embedmot.geometry`: the `Rect` type and the `iou` function.
- `embedmot.imaging`: rectangle clipping, sub-windows, grey and Lab
  conversion, bilinear resizing, and drawing of rectangles and text.
- `embedmot.fft`: spectral helpers used by the correlation filter.
- `embedmot.fhog`: FHOG feature maps (`FeatureMap`, `get_feature_maps`,
  `normalize_and_truncate`, `pca_feature_maps`).
- `embedmot.kcf`: `KCFTracker` and its confidence state `ApceState`.
- `embedmot.detect`: `ObjectDetector` and the detections it returns,
  `FdObject`.
- `embedmot.track`: `ObjectTracker`, a fixed pool of `Tracking` slots.
- `embedmot.pipeline`: `iter_frames`, `mot` and the `main` command.

## What it does not do

Nothing is shown on screen while processing runs, and there is no key to stop
it. Results are only seen through the annotated PNG files written with
`-o`, or through the objects returned by the library. Tracks are not saved in
any results file format.