# src/PACE/db/__init__.py
# Don't import session on package import; models and Alembic only need the metadata.
from .base import Base  # safe to import

__all__ = ["Base"]
