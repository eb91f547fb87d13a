"""Order lifecycle core of the multi-vendor marketplace backend."""

__version__ = "0.1.0"
