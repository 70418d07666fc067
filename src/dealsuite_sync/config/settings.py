"""
Configuration settings for the Dealsuite sync pipeline.

This module centralizes all configuration constants, service endpoints,
and default values used throughout the pipeline. Settings are grouped by
their functional area for easy maintenance.

Configuration includes:
    - Rendering service parameters (endpoint, wait budgets, retry policy)
    - Scraping request headers
    - Target marketplace URL and default filters
    - Session cookie heuristics
    - Extraction service parameters
    - Database connection parameters

Note:
    Secrets (API keys, database passwords) are read from environment
    variables only. Missing secrets are reported when the pipeline is
    assembled, not when this module is imported.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# =============================================================================
# RENDERING SERVICE CONFIGURATION
# =============================================================================
# The rendering service is a Firecrawl-compatible scrape endpoint that loads
# the page in a remote headless browser and returns markdown and HTML.

FIRECRAWL_API_URL = os.getenv("FIRECRAWL_API_URL", "https://api.firecrawl.dev/v1/scrape")
FIRECRAWL_API_KEY = os.getenv("FIRECRAWL_API_KEY", "")

# Ascending wait budgets (milliseconds), one per attempt.
# Heavier JavaScript pages need progressively more time to settle.
RENDER_WAIT_BUDGETS_MS = (30000, 45000, 60000)

# Hard timeout sent to the rendering service, constant across attempts.
# 120 seconds is the maximum the service accepts.
RENDER_HARD_TIMEOUT_MS = int(os.getenv("RENDER_HARD_TIMEOUT_MS", "120000"))

# Maximum number of render attempts per run.
RENDER_MAX_ATTEMPTS = 3

# Fixed pause between two render attempts.
RENDER_RETRY_DELAY_SECONDS = float(os.getenv("RENDER_RETRY_DELAY_SECONDS", "3.0"))

# Rendered markdown shorter than this is treated as empty.
RENDER_MIN_CONTENT_LENGTH = 200

# Sub-resource types the remote browser should not download.
RENDER_BLOCKED_RESOURCES = ("image", "media", "font")

# Optional CSS selector signalling that the deal list has rendered.
# When set, the remote browser waits for it instead of a fixed delay.
RENDER_CONTENT_SELECTOR = os.getenv("RENDER_CONTENT_SELECTOR", "")

# Extra seconds on top of the remote hard timeout before the local HTTP
# client gives up on the response.
RENDER_CLIENT_TIMEOUT_SLACK_SECONDS = 15

# =============================================================================
# SCRAPING HEADERS
# =============================================================================
# Headers forwarded by the remote browser to the target site.
# The session cookie is added per request and never stored here.

SCRAPING_USER_AGENT = os.getenv(
    "SCRAPING_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)
SCRAPING_ACCEPT_LANGUAGE = os.getenv(
    "SCRAPING_ACCEPT_LANGUAGE",
    "en-US,en;q=0.9,es;q=0.8",
)
SCRAPING_HEADERS = {
    "User-Agent": SCRAPING_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
              "image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": SCRAPING_ACCEPT_LANGUAGE,
    "Referer": "https://app.dealsuite.com/",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# =============================================================================
# TARGET MARKETPLACE
# =============================================================================

DEALSUITE_WANTED_URL = os.getenv(
    "DEALSUITE_WANTED_URL",
    "https://app.dealsuite.com/en/market/wanted",
)

# Query parameters applied to every Wanted-board request.
# currency=1 is EUR, continents=3 is Europe.
DEALSUITE_DEFAULT_FILTERS = {
    "currency": "1",
    "continents": "3",
    "ebitda_in_percentage": "1",
}

# =============================================================================
# SESSION COOKIE HEURISTICS
# =============================================================================

# Cookie names that must be present for the session to authenticate.
REQUIRED_COOKIE_NAMES = ("user", "dstoken")

# Cookie names reported as detected when present.
KNOWN_COOKIE_NAMES = ("_xsrf", "user", "dstoken")

# A full browser cookie string is rarely shorter than this.
MIN_COOKIE_LENGTH = 40

# A full browser cookie string normally carries at least this many pairs.
MIN_COOKIE_SEGMENTS = 3

# Lifetime of a signed "user" cookie, counted from its signing timestamp.
SESSION_COOKIE_MAX_AGE_DAYS = 31

# =============================================================================
# EXTRACTION SERVICE CONFIGURATION
# =============================================================================

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

# Low temperature keeps the structured output deterministic.
EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 4000

# Only this many characters of rendered content are sent to the model.
EXTRACTION_MAX_CONTENT_CHARS = 30000

EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120"))

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================
# "sqlite" for local runs, "postgres" for the shared deployment.

DEALS_DB_BACKEND = os.getenv("DEALS_DB_BACKEND", "sqlite")
DEALS_SQLITE_PATH = os.getenv("DEALS_SQLITE_PATH", "dealsuite_deals.db")
DEALS_TABLE_NAME = "dealsuite_deals"

POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_USER = os.getenv("POSTGRES_USER", "dealsuite")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "")
POSTGRES_DATABASE = os.getenv("POSTGRES_DATABASE", "dealsuite")

# Consolidated connection parameters dictionary for psycopg2.
POSTGRES_CONNECTION_PARAMS = {
    "host": POSTGRES_HOST,
    "port": POSTGRES_PORT,
    "user": POSTGRES_USER,
    "password": POSTGRES_PASSWORD,
    "dbname": POSTGRES_DATABASE,
}

# =============================================================================
# RESULT PREVIEWS
# =============================================================================

LOGIN_PREVIEW_CHARS = 500
DRY_RUN_PREVIEW_CHARS = 5000
DRY_RUN_HTML_PREVIEW_CHARS = 2000

# =============================================================================
# HTTP INVOCATION ENDPOINT
# =============================================================================

API_HOST = os.getenv("DEALSUITE_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("DEALSUITE_API_PORT", "8080"))
API_ROUTE = "/dealsuite/scrape-wanted"
API_ENABLE_CORS = _env_flag("DEALSUITE_API_ENABLE_CORS", "true")

# Deadline applied to each run started through the endpoint (0 disables it).
API_RUN_DEADLINE_SECONDS = float(os.getenv("DEALSUITE_API_RUN_DEADLINE_SECONDS", "600"))

API_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}
