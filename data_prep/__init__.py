"""
Data preparation — turning the loader's tables into an immutable ProjectDataset.
"""

from .dataset_builder import build_project_dataset

__all__ = [
    "build_project_dataset",
]
