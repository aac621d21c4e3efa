"""DStorage: access-controlled file storage with client-side encryption."""

__version__ = "0.1.0"
