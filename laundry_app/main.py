import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS, GOOGLE_MAPS_API_KEY, GOOGLE_MAPS_API_KEYS, GOOGLE_REQUEST_TIMEOUT
from .routes.places_proxy import router as places_proxy_router
from .routes.system_check import router as system_check_router
from .services.places_client import PlacesClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")

    # The proxy always calls Google directly, whatever PLACES_USE_PROXY says for clients
    http_client = httpx.AsyncClient(timeout=GOOGLE_REQUEST_TIMEOUT)
    places_client = PlacesClient(
        http_client,
        api_key=GOOGLE_MAPS_API_KEY,
        candidate_keys=GOOGLE_MAPS_API_KEYS,
        use_proxy=False,
    )
    app.state.places_client = places_client
    app.state.key_selection = await places_client.initialize()
    logger.info(f"🗺️ Google Maps API key source: {app.state.key_selection.source}")

    try:
        from .rate_limiter import get_redis_client

        get_redis_client()  # Connection test
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis connection failed - proxy cache and rate limiting disabled: {e}")

    yield

    logger.info("Application shutting down...")
    await places_client.aclose()
    await http_client.aclose()


app = FastAPI(title="Laundry Pickup Geo API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.include_router(places_proxy_router)
app.include_router(system_check_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
