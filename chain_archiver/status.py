from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import Settings, get_settings
from .errors import DateBeforeGenesis, ManifestError
from .manifest import manifest_for_date
from .metrics import METRICS_REGISTRY
from .periods import Date

app = FastAPI(title="Chain archiver status")
logger = logging.getLogger(__name__)


@app.get("/healthz")
async def health(settings: Settings = Depends(get_settings)) -> dict:
    return {
        "status": "ok",
        "network": settings.network,
        "ship_path": str(settings.ship_path),
        "ship_path_exists": settings.ship_path.is_dir(),
    }


@app.get("/manifests/{date}")
async def manifest(date: str, settings: Settings = Depends(get_settings)) -> dict:
    try:
        parsed = Date.parse(date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid date '{date}'") from exc

    try:
        em = manifest_for_date(
            parsed,
            settings.network,
            settings.network_genesis_ts,
            settings.ship_path,
            settings.schema_version,
            settings.allowed_tables(),
            compression=settings.compression_scheme,
        )
    except DateBeforeGenesis as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ManifestError as exc:
        logger.warning("Failed to inspect archive: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "date": str(em.period.date),
        "network": em.network,
        "start_height": em.period.start_height,
        "end_height": em.period.end_height,
        "complete": not em.has_unshipped_files(),
        "files": [
            {"table": ef.table_name, "path": ef.path(), "shipped": ef.shipped}
            for ef in em.files
        ],
    }


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    payload = generate_latest(METRICS_REGISTRY)
    return PlainTextResponse(payload, media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):  # type: ignore[override]
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


__all__ = ["app"]
