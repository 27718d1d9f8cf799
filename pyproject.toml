[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "avlhist"
version = "0.1.0"
description = "Sliding-window histograms on an AVL tree with tracked percentiles and percentile search over products of histograms"
requires-python = ">=3.10"
dependencies = []
keywords = ["histogram", "percentile", "avl", "sliding-window", "cdf", "statistics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["avlhist"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
