"""Top-level package for the vaccine inventory reconciliation service.

Kept small on purpose: subpackages hold the actual code.
"""
__all__ = ["api", "core", "pipeline", "repo"]
__version__ = "0.1.0"
