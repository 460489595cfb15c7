"""
unibo

Top-level package for the universal business object (BO) persistence layer.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# Keep this file minimal to avoid import-time side effects (driver imports live in
# the backend-specific DAO modules).
