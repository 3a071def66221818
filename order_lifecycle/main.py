"""
Order lifecycle API: save orders with automatic state adjustment, dry-run classification.
Run: uvicorn order_lifecycle.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from order_lifecycle.config import settings
from order_lifecycle.db import OrderNotFoundError, close_pool, get_pool, init_schema
from order_lifecycle.metrics import get_metrics_bytes, get_metrics_content_type, order_classification_errors_total
from order_lifecycle.routes import orders
from order_lifecycle.statuses import StatusConfigError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    logger.info("Schema ready.")
    yield
    await close_pool()


app = FastAPI(title="Order Lifecycle", lifespan=lifespan)
app.include_router(orders.router)


@app.exception_handler(StatusConfigError)
async def status_config_error(request: Request, exc: StatusConfigError) -> JSONResponse:
    order_classification_errors_total.inc()
    return JSONResponse(status_code=500, content={"status": "error", "detail": str(exc)})


@app.exception_handler(OrderNotFoundError)
async def order_not_found(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"status": "not_found", "order_id": exc.order_id})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: classifications, lifecycle transitions, config errors."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
