"""Repository tree model and selection facade."""

from .model import ROOT_KEY, TreeModel, iter_file_paths
from .selection import SelectionController

__all__ = ["ROOT_KEY", "SelectionController", "TreeModel", "iter_file_paths"]
