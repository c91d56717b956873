[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flexfec"
version = "0.1.0"
description = "FlexFEC forward error correction for RTP: coverage masks, FlexFEC-03 and flexible encoders, a decoder and a sending interceptor"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtp", "fec", "flexfec", "webrtc", "forward error correction", "video"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["flexfec"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
