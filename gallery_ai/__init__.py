"""Gallery AI: photo analysis, person clustering and natural-language photo search."""

__version__ = "0.1.0"
