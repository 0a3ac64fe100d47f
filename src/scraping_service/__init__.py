"""Scraping Service: cached, de-duplicated URL extraction backed by Firecrawl."""

__version__ = "0.1.0"
