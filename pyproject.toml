[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dragsync"
version = "0.1.0"
description = "Share the position of a draggable square and key-frame files between a server and TCP clients"
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "sockets", "synchronisation", "file transfer", "drag"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: X11 Applications",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
dragsync-server = "dragsync.server:main"
dragsync-client = "dragsync.client:main"

[tool.hatch.build.targets.wheel]
packages = ["dragsync"]

[tool.pytest.ini_options]
addopts = "-ra"
