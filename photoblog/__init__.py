"""SQLite storage, site settings, visit statistics and upload helpers for a photo blog."""

__version__ = "0.1.0"