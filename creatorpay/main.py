from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creatorpay.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from creatorpay.routers.checkout import router as checkout_router
from creatorpay.routers.content import router as content_router
from creatorpay.routers.creator import router as creator_router
from creatorpay.routers.misc import router as misc_router
from creatorpay.routers.ops import router as ops_router
from creatorpay.routers.webhooks import router as webhooks_router

def create_app() -> FastAPI:
    app = FastAPI(title="Creator Payments Ledger", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(misc_router)
    app.include_router(webhooks_router)
    app.include_router(checkout_router)
    app.include_router(content_router)
    app.include_router(creator_router)
    app.include_router(ops_router)

    return app

app = create_app()
