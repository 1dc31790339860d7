# src/housingflow/__init__.py
"""
housingflow: recipe / workflow / tuning utilities for house-price regression.

Keep this file minimal to avoid circular imports during test discovery.
Do NOT import submodules here.
"""

__all__ = [
    "errors",
    "split",
    "selectors",
    "steps",
    "recipe",
    "modeling",
    "workflow",
    "metrics",
    "tune",
    "progress",
    "config",
    "io",
    "baselines",
    "plots",
    "walkthrough",
]
__version__ = "0.1.0"
