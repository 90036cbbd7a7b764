[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "neatlab"
version = "0.1.0"
description = "Experiment runner and statistics for NeuroEvolution of Augmenting Topologies, with XOR and pole-balancing benchmarks"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "neat",
    "neuroevolution",
    "genetic-algorithms",
    "evolutionary-computation",
    "pole-balancing",
    "xor",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["neatlab"]

[tool.pytest.ini_options]
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
