"""gitshlc - pull/push/merge across test and deploy environments."""

__version__ = "0.1.0"
