"""
Doc Migrator.

Rate-limited, budget-aware, resumable documentation migration runs.
"""

__version__ = "0.1.0"
