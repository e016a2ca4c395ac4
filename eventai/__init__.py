"""Event AI server: event records, crowd forecasts and AI enrichment over REST."""

__version__ = "1.0.0"
