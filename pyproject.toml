[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gputelemetry"
version = "0.1.0"
description = "Partitioned in-process message queue with write-ahead logging, consumer groups and a CSV telemetry streamer"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "message-queue",
    "write-ahead-log",
    "consumer-groups",
    "ring-buffer",
    "telemetry",
    "gpu",
    "csv",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["gputelemetry"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
