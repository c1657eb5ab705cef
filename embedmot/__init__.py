"""Multi-object tracking for static cameras: frame-difference detection with KCF trackers."""

__version__ = "0.1.0"