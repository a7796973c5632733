from __future__ import annotations

import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI

from rulesync.config import RulesApiConfig, load_config
from rulesync.routers import health, rules
from rulesync.services.repository import RulesRepository
from rulesync.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and liveness."},
    {"name": "Rules", "description": "Per-tenant rule groups with enforced tenant ownership labels."},
]

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def create_app(
    config: Optional[RulesApiConfig] = None,
    repository: Optional[RulesRepository] = None,
) -> FastAPI:
    """
    Build the rules API application.

    Without arguments the config comes from env and rule groups are stored in MongoDB; tests and
    embedders can pass their own config and repository.
    """
    app = FastAPI(
        title="Rules API",
        description=(
            "Multi-tenant API for alerting and recording rule groups. "
            "Every rule read or written carries the caller's tenant id in the configured tenant label."
        ),
        version="0.1.0",
        openapi_tags=openapi_tags,
    )

    init_state(app, config or load_config(), repository)

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: connect to Mongo, validate connectivity and ensure indexes."""
        state = get_state(app)
        if state.mongo is None:
            return

        # Connect + verify early so a misconfigured Mongo fails the deployment instead of every request.
        state.mongo.connect()
        if not state.mongo.ping():
            raise RuntimeError("Mongo connectivity check failed during startup. Verify RULES_MONGO_URI.")
        state.mongo.init_indexes()
        logger.info("Rules API started (label=%s, tenants=%d)", state.config.tenant_label, len(state.config.tenants))

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: close Mongo connections."""
        state = get_state(app)
        if state.mongo is not None:
            state.mongo.close()

    app.include_router(health.router)
    app.include_router(rules.router)
    return app


# PUBLIC_INTERFACE
def run() -> None:
    """Console entry point: serve the rules API with uvicorn."""
    uvicorn.run(
        "rulesync.main:create_app",
        factory=True,
        host=os.getenv("RULES_API_HOST", "0.0.0.0"),
        port=int(os.getenv("RULES_API_PORT", "8080")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
