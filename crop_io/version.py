"""Central location for version information."""

__version__ = "0.1.0"
