[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chnative"
version = "0.1.0"
description = "Client for the ClickHouse native TCP protocol, with LZ4 block compression and optional TLS"
requires-python = ">=3.10"
dependencies = [
    "lz4",
]
keywords = ["clickhouse", "database", "native protocol", "client", "lz4", "tcp", "tls"]
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
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["chnative"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
