"""Sofascore odds/statistics scraper and StubHub ticket extractor."""

__version__ = "0.3.0"
