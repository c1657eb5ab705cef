[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "embedmot"
version = "0.1.0"
description = "Multi-object tracking for static cameras: frame-difference detection with KCF trackers"
requires-python = ">=3.10"
keywords = ["tracking", "multi-object tracking", "kcf", "motion detection", "fhog", "computer vision"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "scipy",
    "imageio",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
embedmot = "embedmot.pipeline:main"

[tool.hatch.build.targets.wheel]
packages = ["embedmot"]

[tool.pytest.ini_options]
addopts = "-ra"
