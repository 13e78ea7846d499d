"""livefront - incremental front-end compiler with dependency tracking and live reload."""

__version__ = "0.1.0"
