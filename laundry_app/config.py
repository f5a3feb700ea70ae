import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Google Maps Platform
# An explicitly configured key always wins over the probed candidate list
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
GOOGLE_MAPS_API_KEYS = [
    k.strip() for k in os.getenv("GOOGLE_MAPS_API_KEYS", "").split(",") if k.strip()
]
GOOGLE_REQUEST_TIMEOUT = float(os.getenv("GOOGLE_REQUEST_TIMEOUT", "10"))

# Same-origin proxy, for clients that cannot reach maps.googleapis.com directly (CORS)
PLACES_USE_PROXY = os.getenv("PLACES_USE_PROXY", "false").lower() == "true"
PLACES_PROXY_BASE_URL = os.getenv("PLACES_PROXY_BASE_URL", "http://localhost:8000").rstrip("/")

# Spacing between outbound calls, in seconds
GEOCODE_REQUEST_DELAY = float(os.getenv("GEOCODE_REQUEST_DELAY", "1.0"))
DEFAULT_REQUEST_DELAY = float(os.getenv("DEFAULT_REQUEST_DELAY", "0.1"))

# Reverse geocode cache (in-memory, per process)
GEOCODE_CACHE_TTL_SECONDS = int(os.getenv("GEOCODE_CACHE_TTL_SECONDS", "300"))

# Proxy endpoint protection
PLACES_PROXY_RPM = int(os.getenv("PLACES_PROXY_RPM", "60"))
PLACES_PROXY_CACHE_SECONDS = int(os.getenv("PLACES_PROXY_CACHE_SECONDS", "300"))

# Frontend base URL, used for CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:8081")
CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",") if o.strip()
]
