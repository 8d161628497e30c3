[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "heapsim"
version = "0.1.0"
description = "Simulated heap allocators, an allocator benchmark, and malloc trace tools"
requires-python = ">=3.10"
dependencies = []
keywords = ["malloc", "allocator", "heap", "memory", "simulation", "trace", "benchmark"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
heapsim-challenge = "heapsim.challenge:main"
heapsim-timeline = "heapsim.timeline:main"

[tool.hatch.build.targets.wheel]
packages = ["heapsim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
