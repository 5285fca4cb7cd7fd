"""A multi-threaded MapReduce framework with map, sort, shuffle and reduce phases."""

__version__ = "0.1.0"
__all__ = ["barrier", "framework"]