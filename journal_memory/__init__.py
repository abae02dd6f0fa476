"""Semantic memory for a personal journal: embedding index, search and themes"""

__version__ = "1.0.0"
