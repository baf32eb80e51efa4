from .base import APIModel, StrictInput

__all__ = ["APIModel", "StrictInput"]
