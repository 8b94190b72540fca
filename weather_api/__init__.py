"""Weather API: authenticated, cached proxy for current weather."""

__version__ = "0.1.0"
