"""Core package of DStorage."""
