from __future__ import annotations

import ipaddress
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from geotally import config
from geotally.engine import GeoAnalytics
from geotally.errors import ConfigError
from geotally.models import IPAddress
from geotally.report import render_analytics

logger = logging.getLogger(__name__)

_started_at: datetime | None = None
_started_mono: float = 0.0


def configure_logging() -> None:
    """Install the root handler once; later calls keep the existing one."""
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)


def _required(name: str) -> str:
    value = getattr(config, name)
    if not value:
        raise ConfigError(f"${name} must be set")
    return value


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _started_at, _started_mono

    configure_logging()
    _started_at = datetime.now(timezone.utc)
    _started_mono = time.monotonic()

    # Any failure here aborts startup before the server accepts traffic
    country_db = _required("GEOLITE2_COUNTRY_DB")
    analytics_db = _required("ANALYTICS_DB")
    engine = GeoAnalytics.open(country_db, analytics_db)
    app.state.engine = engine
    try:
        yield
    finally:
        engine.close()
        app.state.engine = None


app = FastAPI(title="Visitor Country Analytics", version=config.APP_VERSION, lifespan=lifespan)


def get_engine(request: Request) -> GeoAnalytics:
    return request.app.state.engine


def _client_addr(request: Request) -> IPAddress | None:
    raw = request.headers.get(config.CLIENT_IP_HEADER, "").strip()
    if not raw and request.client:
        raw = request.client.host
    try:
        return ipaddress.ip_address(raw)
    except ValueError:
        return None


def _uptime() -> dict:
    if _started_at is None:
        return {"started_at": None, "uptime_seconds": 0}
    return {
        "started_at": _started_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "uptime_seconds": int(time.monotonic() - _started_mono),
    }


@app.get("/")
async def root_get(request: Request, engine: GeoAnalytics = Depends(get_engine)):
    country = None
    addr = _client_addr(request)
    if addr is not None:
        country = await engine.resolve_and_record(addr)
        if country is not None:
            logger.info("Got request from %s", country)
        else:
            logger.warning("Could not determine country for IP address")
    return JSONResponse(content={"country": country})


@app.get("/analytics", response_class=PlainTextResponse)
async def analytics_get(engine: GeoAnalytics = Depends(get_engine)):
    rows = await engine.snapshot_report()
    return PlainTextResponse(content=render_analytics(rows))


@app.api_route("/api/v1/status", methods=["GET", "HEAD"])
async def get_status(engine: GeoAnalytics = Depends(get_engine)):
    counts = engine.index.counts
    rows = await engine.snapshot_report()
    return JSONResponse(
        content={
            **_uptime(),
            "version": config.APP_VERSION,
            "ranges": {"ipv4": counts[4], "ipv6": counts[6]},
            "countries": len(rows),
        }
    )
