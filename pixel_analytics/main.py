from contextlib import asynccontextmanager
from functools import lru_cache
import json
import os

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pixel_analytics.cache import TTLCache
from pixel_analytics.config import get_settings
from pixel_analytics.conversions import ClientContext, ConversionsClient
from pixel_analytics.database import get_db, init_db, ping
from pixel_analytics.exceptions import TrackingError
from pixel_analytics.geo import GeoResolver
from pixel_analytics.ingestion import IngestionService, IngestResult
from pixel_analytics.logging_config import setup_logging
from pixel_analytics.normalizer import decode_beacon_query, parse_body
from pixel_analytics.pixels import PixelConfig, PixelConfigRepository
from pixel_analytics.schemas import TrackResponse

# 1x1 transparent GIF
PIXEL_GIF = bytes.fromhex("47494638396101000100800000000000ffffff21f90401000000002c00000000010001000002024401003b")
NO_STORE = {"Cache-Control": "no-store, no-cache, must-revalidate, max-age=0"}

SCRIPT_TEMPLATE_PATH = os.path.join(os.path.dirname(__file__), "static", "pixel.js")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    logger.info("Pixel analytics service started")
    yield


app = FastAPI(title="Pixel Analytics", lifespan=lifespan)

# Storefronts live on arbitrary merchant domains
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@lru_cache
def get_ingestion_service() -> IngestionService:
    settings = get_settings()
    return IngestionService(
        pixels=PixelConfigRepository(TTLCache(default_ttl=settings.PIXEL_CACHE_TTL_SECONDS)),
        geo=GeoResolver(settings),
        conversions=ConversionsClient(settings),
    )


def client_context(request: Request) -> ClientContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else None
    ip = ip or request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return ClientContext(ip=ip or "0.0.0.0", user_agent=request.headers.get("user-agent", ""))


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(TrackResponse(success=False, error=message).to_json(), status_code=status_code)


def _schedule_forward(background_tasks: BackgroundTasks, service: IngestionService, result: IngestResult) -> None:
    if result.pixel.conversions_enabled:
        background_tasks.add_task(service.forward, result)


@app.post("/api/track")
async def track_event(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Receive one tracking event from the storefront script.

    Accepts ``application/json`` and ``text/plain`` bodies (``navigator.sendBeacon``).
    The Conversions API call runs after the response is sent.
    """
    raw = await request.body()
    client = client_context(request)
    try:
        body = parse_body(raw)
        result = await run_in_threadpool(service.ingest, db, body, client)
    except TrackingError as e:
        if e.status_code >= 500:
            logger.error(f"Tracking failed: {e.message} ({e.internal_error})")
        else:
            logger.info(f"Tracking rejected ({e.status_code}): {e.message}")
        return _error_response(e.status_code, e.message)
    except Exception as e:
        logger.exception("Unexpected error while tracking event")
        return _error_response(500, str(e) if get_settings().DEBUG else "Internal error")

    _schedule_forward(background_tasks, service, result)
    return JSONResponse(TrackResponse(success=True, event_id=result.event_id).to_json())


@app.get("/api/track")
def track_event_fallback(
    request: Request,
    background_tasks: BackgroundTasks,
    e: str | None = Query(None, description="Event name"),
    d: str | None = Query(None, description="Base64 encoded JSON payload"),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Image-pixel fallback for browsers that cannot POST a beacon.

    Always answers with a transparent GIF so the page never sees an error.
    """
    if d:
        try:
            body = decode_beacon_query(e, d)
            result = service.ingest(db, body, client_context(request))
            _schedule_forward(background_tasks, service, result)
        except TrackingError as err:
            logger.warning(f"Fallback tracking rejected ({err.status_code}): {err.message}")
        except Exception:
            logger.exception("Unexpected error in fallback tracking")

    return Response(content=PIXEL_GIF, media_type="image/gif", headers=NO_STORE)


def render_pixel_script(pixel: PixelConfig, base_url: str) -> str:
    config = {
        "pixelId": pixel.public_id,
        "endpoint": base_url.rstrip("/") + "/api/track",
        "autoTrack": {
            "pageviews": pixel.auto_track_pageviews,
            "clicks": pixel.auto_track_clicks,
            "scroll": pixel.auto_track_scroll,
            "viewContent": pixel.auto_track_view_content,
            "addToCart": pixel.auto_track_add_to_cart,
            "initiateCheckout": pixel.auto_track_initiate_checkout,
            "purchase": pixel.auto_track_purchase,
        },
        "customEvents": [
            {"name": ce.name, "selector": ce.selector, "eventType": ce.event_type}
            for ce in pixel.custom_events
            if ce.selector
        ],
    }
    with open(SCRIPT_TEMPLATE_PATH, encoding="utf-8") as f:
        template = f.read()
    # Escape "</" so the JSON cannot close an inline <script> tag
    return template.replace("__PIXEL_CONFIG__", json.dumps(config).replace("</", "<\\/"))


@app.get("/pixel.js")
def get_pixel_js(
    id: str | None = Query(None, description="Public pixel id"),
    db: Session = Depends(get_db),
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Serves the storefront tracking script configured for one pixel.
    """
    headers = {"Cache-Control": "public, max-age=300", "X-Content-Type-Options": "nosniff"}
    media_type = "application/javascript; charset=utf-8"

    if not id:
        return Response("// Missing pixel id", status_code=400, media_type=media_type, headers=headers)

    try:
        pixel = service.pixels.get(db, id)
    except SQLAlchemyError:
        logger.exception(f"Could not load pixel {id} for script")
        return Response("// Tracking temporarily unavailable", status_code=503, media_type=media_type, headers=headers)

    if pixel is None:
        stub = (
            f"console.warn('[PixelAnalytics] Unknown pixel: ' + {json.dumps(id)});\n"
            "window.PixelAnalytics = { track: function () {} };\n"
        )
        return Response(stub, media_type=media_type, headers=headers)

    return Response(render_pixel_script(pixel, get_settings().PUBLIC_BASE_URL), media_type=media_type, headers=headers)


@app.get("/health")
def health():
    settings = get_settings()
    try:
        ping()
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse({"status": "unavailable", "database": "down"}, status_code=503)
    return {"status": "ok", "service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
