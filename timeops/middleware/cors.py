"""
CORS for the local dashboard that drives the engine.
"""
from fastapi.middleware.cors import CORSMiddleware
from timeops.config import settings
import logging

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def parse_origins(raw: str) -> list[str]:
    """Comma-separated origins; empty falls back to local dev servers."""
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or list(DEFAULT_ORIGINS)


def setup_cors(app, raw_origins: str | None = None):
    origins = parse_origins(settings.CORS_ORIGINS if raw_origins is None else raw_origins)
    logger.info(f"CORS configured with origins: {origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return origins
