"""Constants for the scrape and map pipelines."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

#: Provider name used for key service lookups.
PROVIDER_NAME: str = "firecrawl"

#: Formats requested when the caller does not specify any.
DEFAULT_FORMATS: tuple[str, ...] = ("markdown",)

# ---------------------------------------------------------------------------
# Map limits
# ---------------------------------------------------------------------------

#: Hard ceiling on URLs returned by a single map call.
MAP_LIMIT_CEILING: int = 500

#: Limit used when the caller does not send one.
MAP_DEFAULT_LIMIT: int = 100

# ---------------------------------------------------------------------------
# Runs service
# ---------------------------------------------------------------------------

SCRAPE_TASK_NAME: str = "scrape"
MAP_TASK_NAME: str = "map"

#: Cost line item reported once per successful extraction.
SCRAPE_COST_NAME: str = "firecrawl-scrape-credit"

#: Cost line item reported once per successful map call.
MAP_COST_NAME: str = "firecrawl-map-credit"

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

#: ``source_service`` recorded when neither the body nor the header names one.
UNKNOWN_SOURCE_SERVICE: str = "unknown"
