# src/PACE/__init__.py
"""Progress & Authorization Consistency Engine."""

__version__ = "0.1.0"
