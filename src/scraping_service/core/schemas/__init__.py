"""Pydantic schemas for request/response validation.

Sub-modules:
    scraping - ScrapeRequestBody, MapRequestBody, ScrapeResultRead and the
               scrape / by-url / map response envelopes
"""

from __future__ import annotations
