"""Per-node GPU allocation coordinator and artifact cache reconciler."""

__version__ = "0.1.0"
