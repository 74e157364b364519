"""LocalHub backend: plugin document store and OAuth gateway."""

__version__ = "0.1.0"
