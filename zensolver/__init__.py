"""zensolver: on-screen memory grid sequence detector."""

__version__ = "0.1.0"
