"""Tags for a cargo project and all of its dependencies."""

__version__ = "0.1.0"
