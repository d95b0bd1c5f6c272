# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.logging import setup_logging
from app.db.base import init_models
from app.db.session import close_engines
from app.http_problem_handlers import register_exception_handlers

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("wms")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_models()
    logger.info("WMS fulfillment started (env=%s)", settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="WMS Fulfillment",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# ===========================
#   库位 / 库存
# ===========================
from app.api.routers.health import router as health_router  # noqa: E402
from app.api.routers.inventory import router as inventory_router  # noqa: E402
from app.api.routers.locations import router as locations_router  # noqa: E402

# ===========================
#   销售单 / 拣货
# ===========================
from app.api.routers.picking import router as picking_router  # noqa: E402
from app.api.routers.sales_orders import router as sales_orders_router  # noqa: E402

app.include_router(health_router)
app.include_router(locations_router)
app.include_router(inventory_router)
app.include_router(sales_orders_router)
app.include_router(picking_router)


@app.get("/")
async def root():
    return {"name": "WMS Fulfillment", "version": "0.1.0"}
