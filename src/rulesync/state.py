from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from rulesync.config import RulesApiConfig
from rulesync.db.mongo import MongoManager
from rulesync.db.rules_repository import MongoRulesRepository
from rulesync.services.repository import RulesRepository


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: RulesApiConfig
    repository: RulesRepository
    mongo: Optional[MongoManager] = None  # set only when the repository is Mongo-backed


# PUBLIC_INTERFACE
def init_state(
    app: FastAPI,
    config: RulesApiConfig,
    repository: Optional[RulesRepository] = None,
) -> None:
    """Initialize app.state with the rules repository and config (Mongo-backed unless one is given)."""
    if repository is not None:
        app.state.state = AppState(config=config, repository=repository)
        return

    mongo = MongoManager(config.mongo_uri, config.db_name)
    app.state.state = AppState(config=config, repository=MongoRulesRepository(mongo), mongo=mongo)


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
