[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stackflow"
version = "0.1.0"
description = "Unit framework over ZeroMQ: RPC actions, publish/subscribe channels and work-id management"
requires-python = ">=3.10"
dependencies = [
    "pyzmq",
]
keywords = ["zeromq", "rpc", "pubsub", "ipc", "units"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["stackflow"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
