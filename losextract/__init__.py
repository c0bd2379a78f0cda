"""Lyman-alpha forest, HeII and silicon optical depths from simulation line-of-sight files."""

__version__ = "0.1.0"