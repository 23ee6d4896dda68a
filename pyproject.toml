[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flykmc"
version = "0.1.0"
description = "Building blocks for off-lattice kinetic Monte Carlo: local-environment catalogues, EAM tables, neighbour lists, L-BFGS minimisation and dimer rotation."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "kinetic monte carlo",
    "kmc",
    "eam",
    "local environment",
    "neighbour list",
    "lbfgs",
    "saddle point",
    "materials science",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Physics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["flykmc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
