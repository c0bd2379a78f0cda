[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "losextract"
version = "0.1.0"
description = "Compute Lyman-alpha forest, HeII and silicon absorption optical depths from simulation line-of-sight files"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["cosmology", "lyman-alpha", "intergalactic medium", "absorption spectra", "simulation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Astronomy",
    "Topic :: Scientific/Engineering :: Physics",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
losextract = "losextract.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["losextract"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
