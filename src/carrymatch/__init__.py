"""carrymatch - matching and booking engine for traveler-delivered shopping requests."""

__version__ = "0.1.0"
