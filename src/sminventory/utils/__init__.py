"""Utility functions for sminventory."""

from .network import check_internet

__all__ = ["check_internet"]
