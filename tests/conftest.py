from __future__ import annotations

import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from rulesync.config import RulesApiConfig
from rulesync.errors import BackendError, RuleNotFound
from rulesync.schemas.rules import RuleGroup, RuleGroups, load_rules

TENANT_LABEL = "tenant"
TENANTS = {"acme": "t-001", "globex": "t-002"}


@dataclass
class StoredGroup:
    name: str
    interval: timedelta
    rules: bytes


@dataclass
class InMemoryRulesRepository:
    """
    Rules repository fake keeping raw writes per tenant.

    `calls` records every repository call so tests can assert the facade touched (or did not touch)
    the backend. Setting `fail` makes every call raise like a broken backend would.
    """

    groups: Dict[str, List[StoredGroup]] = field(default_factory=dict)
    calls: List[Tuple[str, str, Optional[str]]] = field(default_factory=list)
    fail: Optional[Exception] = None

    def _check(self, op: str, tenant: str, name: Optional[str] = None) -> None:
        self.calls.append((op, tenant, name))
        if self.fail is not None:
            raise self.fail

    def ping(self) -> bool:
        return self.fail is None

    def list_rule_groups(self, tenant: str) -> RuleGroups:
        self._check("list", tenant)
        return RuleGroups(
            groups=[RuleGroup(name=g.name, interval=g.interval, rules=load_rules(g.rules)) for g in self.groups.get(tenant, [])]
        )

    def get_rules(self, tenant: str, name: str) -> RuleGroup:
        self._check("get", tenant, name)
        for g in self.groups.get(tenant, []):
            if g.name == name:
                return RuleGroup(name=g.name, interval=g.interval, rules=load_rules(g.rules))
        raise RuleNotFound(name)

    def create_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        self._check("create", tenant, name)
        existing = self.groups.setdefault(tenant, [])
        if any(g.name == name for g in existing):
            raise BackendError(f"rule group {name} already exists")
        existing.append(StoredGroup(name=name, interval=interval, rules=rules))

    def update_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        self._check("update", tenant, name)
        for g in self.groups.get(tenant, []):
            if g.name == name:
                g.interval = interval
                g.rules = rules
                return
        raise RuleNotFound(name)

    def seed(self, tenant: str, name: str, rules_yaml: str, interval: timedelta = timedelta(minutes=1)) -> None:
        self.groups.setdefault(tenant, []).append(StoredGroup(name=name, interval=interval, rules=rules_yaml.encode()))


@pytest.fixture
def anyio_backend() -> str:
    """The code under test is built on asyncio primitives, so anyio tests run on asyncio."""
    return "asyncio"


@pytest.fixture
def repository() -> InMemoryRulesRepository:
    return InMemoryRulesRepository()


@pytest.fixture
def api_config() -> RulesApiConfig:
    return RulesApiConfig(mongo_uri="mongodb://localhost:27017", tenant_label=TENANT_LABEL, tenants=dict(TENANTS))


@pytest.fixture
def app(api_config: RulesApiConfig, repository: InMemoryRulesRepository):
    """Rules API app wired to the in-memory repository."""
    from rulesync.main import create_app

    return create_app(api_config, repository)


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client bound to the FastAPI ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(scope="session")
def mongo_uri() -> str:
    """MongoDB URI for integration tests; tests depending on it are skipped when none is configured."""
    uri = os.getenv("RULES_MONGO_URI")
    if not uri:
        pytest.skip("RULES_MONGO_URI not set; skipping MongoDB integration tests")
    return uri
