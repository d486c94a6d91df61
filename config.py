"""
Game Site Publisher - Configuration
===================================

All settings come from environment variables. A local .env file is loaded
first so development setups can keep secrets out of the shell profile.
"""

import os
import tempfile
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


# ============================================================================
# HOSTING PROVIDERS
# ============================================================================
HOSTING_PROVIDER = os.getenv("HOSTING_PROVIDER", "github").lower() # github | netlify

GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "") # Personal Access Token with repo + pages scope
GITHUB_USERNAME = os.getenv("GITHUB_USERNAME", "") # Owner of the created repositories
GITHUB_API = os.getenv("GITHUB_API", "https://api.github.com")
GITHUB_BRANCH = os.getenv("GITHUB_BRANCH", "main")

NETLIFY_TOKEN = os.getenv("NETLIFY_TOKEN") or os.getenv("VITE_NETLIFY_TOKEN", "")
NETLIFY_API = os.getenv("NETLIFY_API", "https://api.netlify.com/api/v1")

# Polling for the hosted site to come up
PAGES_POLL_ATTEMPTS = _get_int("PAGES_POLL_ATTEMPTS", 30)
PAGES_POLL_INTERVAL = _get_float("PAGES_POLL_INTERVAL", 2.0)
NETLIFY_POLL_ATTEMPTS = _get_int("NETLIFY_POLL_ATTEMPTS", 30)
NETLIFY_POLL_INTERVAL = _get_float("NETLIFY_POLL_INTERVAL", 5.0)

# ============================================================================
# SUPABASE - Identity Provider + Deployment Metadata
# ============================================================================
SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL", "")
SUPABASE_KEY = (
    os.getenv("SUPABASE_KEY")
    or os.getenv("SUPABASE_ANON_KEY")
    or os.getenv("VITE_SUPABASE_ANON_KEY", "")
)
GAMES_TABLE = os.getenv("GAMES_TABLE", "games")

# ============================================================================
# HTTP SERVER
# ============================================================================
DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:5175",
    "https://host4u-web.onrender.com",
    "https://pinkeshdpatel.github.io",
]
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", ",".join(DEFAULT_CORS_ORIGINS)).split(",")
    if origin.strip()
]

MAX_UPLOAD_SIZE = _get_int("MAX_UPLOAD_SIZE", 100 * 1024 * 1024) # 100MB per file
TEMP_DIR = os.getenv("TEMP_DIR", tempfile.gettempdir())

ENVIRONMENT = os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV", "production")
DEBUG = ENVIRONMENT == "development" # Include tracebacks in 500 responses

PORT = _get_int("PORT", 3001)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def missing_settings() -> List[str]:
    """
    List required settings that are not configured.

    GitHub credentials are required unless Netlify is the selected provider,
    in which case the Netlify token is required instead.

    Returns:
        list: Names of the missing environment variables (empty when ready)
    """
    missing = []
    if HOSTING_PROVIDER == "netlify":
        if not NETLIFY_TOKEN:
            missing.append("NETLIFY_TOKEN")
    else:
        if not GITHUB_TOKEN:
            missing.append("GITHUB_TOKEN")
        if not GITHUB_USERNAME:
            missing.append("GITHUB_USERNAME")
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_KEY:
        missing.append("SUPABASE_KEY")
    return missing
