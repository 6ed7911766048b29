"""Stateless HLS proxy: playlist rewriting plus byte passthrough."""

__version__ = "1.0.0"
