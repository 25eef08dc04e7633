"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv
from starlette.middleware.base import BaseHTTPMiddleware

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import limits, postcards
from db import init_db
from services.assets import close_http_session, register_heif_opener
from services.browser_pool import BrowserPool
from services.markup_renderer import MarkupRenderer
from settings import settings

logger = logging.getLogger(__name__)

# Register HEIF/HEIC opener at startup (for iPhone photos)
register_heif_opener()


class PrivateNetworkAccessMiddleware(BaseHTTPMiddleware):
    """Middleware to handle Private Network Access preflight requests."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Methods"] = "*"
            response.headers["Access-Control-Allow-Headers"] = "*"
            response.headers["Access-Control-Allow-Private-Network"] = "true"
            return response

        response = await call_next(request)
        response.headers["Access-Control-Allow-Private-Network"] = "true"
        return response


app = FastAPI(
    title="Postcard Studio API",
    description="API for rendering and delivering digital postcards",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last so it is the outermost layer and answers every preflight with 204
app.add_middleware(PrivateNetworkAccessMiddleware)

app.include_router(limits.router, prefix="/api", tags=["limits"])
app.include_router(postcards.router, prefix="/api", tags=["postcards"])


@app.on_event("startup")
def startup_event():
    """Initialize database tables and the (lazily launched) browser pool."""
    init_db()
    pool = BrowserPool(headless=settings.BROWSER_HEADLESS)
    app.state.browser_pool = pool
    app.state.markup_renderer = MarkupRenderer(pool)


@app.on_event("shutdown")
async def shutdown_event():
    pool = getattr(app.state, "browser_pool", None)
    if pool is not None:
        await pool.shutdown()
        logger.info("[app] browser pool shut down")
    close_http_session()


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    return {"status": "OK", "message": "Postcard service is running"}
