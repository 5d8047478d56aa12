"""poolman -- keeps slicer filament profiles in sync with a filament pool."""

__version__ = "0.1.0"
