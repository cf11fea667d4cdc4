from __future__ import annotations

import logging
from typing import Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from subsync.core.settings import S
from subsync.metrics import metrics_endpoint, metrics_middleware, set_app_info
from subsync.routers.stripe_webhook import router as stripe_webhook_router


def create_app() -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, S.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Subscription Webhook Reconciler", version="0.1.0")

    @app.get("/healthz")
    def healthz() -> Dict[str, bool]:
        return {"ok": True}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in S.cors_allow_origins.split(",") if o.strip()] or ["*"],
        allow_credentials=False,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
    )
    if S.metrics_enabled:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(stripe_webhook_router)

    return app


app = create_app()
