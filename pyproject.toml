[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "finchvm"
version = "0.1.0"
description = "Configuration and command helpers for a Lima-based container development VM"
requires-python = ">=3.11"
keywords = ["lima", "limactl", "nerdctl", "containers", "virtual-machine", "qemu", "vz"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]
dependencies = [
    "pyyaml",
    "tomli-w",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["finchvm"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"
