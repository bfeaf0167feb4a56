"""Global configuration for the itinerary planner.

This module loads environment variables from .env file and provides
centralized configuration for the entire application.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
# Look for .env in the project root directory
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


# ============================================================================
# Language Model Configuration
# ============================================================================

# Default model name for the narrative collaborator
DEFAULT_MODEL_NAME: str = os.getenv("DEFAULT_MODEL_NAME", "gemini-2.0-flash")

# Default temperature for LLM calls
DEFAULT_TEMPERATURE: float = float(os.getenv("DEFAULT_TEMPERATURE", "0.2"))


# ============================================================================
# Geocoding Cache Configuration
# ============================================================================

# Entry lifetime (default: 24 hours)
GEOCODE_CACHE_TTL_SECONDS: float = float(os.getenv("GEOCODE_CACHE_TTL_SECONDS", "86400"))

# Capacity bound before the oldest insertion is evicted
GEOCODE_CACHE_MAX_ENTRIES: int = int(os.getenv("GEOCODE_CACHE_MAX_ENTRIES", "1000"))

# Interval of the background sweep of expired entries (default: 1 hour)
GEOCODE_CACHE_SWEEP_SECONDS: float = float(os.getenv("GEOCODE_CACHE_SWEEP_SECONDS", "3600"))


# ============================================================================
# Travel-Time Provider / Route Optimizer Configuration
# ============================================================================

# Timeout applied to every geocoding and routes request
PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))

# Attempts per request when the backend answers 429/5xx
PROVIDER_MAX_ATTEMPTS: int = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "2"))

# Fan-out for matrix building and fast-path edges
ROUTE_MAX_CONCURRENCY: int = int(os.getenv("ROUTE_MAX_CONCURRENCY", "4"))

# Delay between fast-path edge requests
FAST_PATH_PACING_SECONDS: float = float(os.getenv("FAST_PATH_PACING_SECONDS", "0.1"))


# ============================================================================
# Itinerary Orchestrator Configuration
# ============================================================================

NARRATIVE_TIMEOUT_SECONDS: float = float(os.getenv("NARRATIVE_TIMEOUT_SECONDS", "25"))
NARRATIVE_LARGE_TIMEOUT_SECONDS: float = float(os.getenv("NARRATIVE_LARGE_TIMEOUT_SECONDS", "20"))
OPTIMIZATION_TIMEOUT_SECONDS: float = float(os.getenv("OPTIMIZATION_TIMEOUT_SECONDS", "45"))

# Inputs above this many stops take the degraded large-input path
LARGE_ITINERARY_THRESHOLD: int = int(os.getenv("LARGE_ITINERARY_THRESHOLD", "10"))

# Number of stops sent to the narrative collaborator on the large-input path
LARGE_ITINERARY_NARRATIVE_STOPS: int = int(os.getenv("LARGE_ITINERARY_NARRATIVE_STOPS", "8"))


# ============================================================================
# Logging
# ============================================================================

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: Optional[str] = None) -> None:
    """Install a root handler once; module loggers inherit from it."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# ============================================================================
# API Keys
# ============================================================================

def get_google_api_key() -> Optional[str]:
    """Get Google API key (Gemini) from environment variables."""
    return os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")


def get_google_maps_api_key() -> Optional[str]:
    """Get Google Maps API key, accepting the legacy Places variable as well."""
    return os.getenv("GOOGLE_MAPS_API_KEY") or os.getenv("GOOGLE_PLACES_API_KEY")


# ============================================================================
# Validation
# ============================================================================

def validate_api_keys() -> List[str]:
    """Validate that required API keys are present. Returns list of missing keys."""
    missing = []

    maps_key = get_google_maps_api_key()
    if not maps_key or maps_key in {"YOUR_GOOGLE_API_KEY", "your_google_maps_api_key_here"}:
        missing.append("GOOGLE_MAPS_API_KEY")

    if not get_google_api_key():
        missing.append("GOOGLE_API_KEY or GEMINI_API_KEY")

    return missing
