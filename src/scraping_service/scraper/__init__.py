"""Scrape and map pipelines backed by the Firecrawl extraction provider.

Modules:
    config           - provider constants, cost names and limits
    firecrawl_client - async Firecrawl REST client (extract, discover)
    orchestrator     - cache-first scrape pipeline
    mapper           - site discovery pipeline
    router           - FastAPI routes for /scrape and /map
"""
