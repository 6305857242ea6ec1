"""
Data Module - Read-only CSV game data.

The board, its effects and the card catalog come from CSV files.
A small sample board ships with the package.
"""

from .database import CSVDatabase, SAMPLE_DIR, TABLE_FILES

__all__ = [
    "CSVDatabase",
    "SAMPLE_DIR",
    "TABLE_FILES",
]
