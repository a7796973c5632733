"""Contract the rules API requires from a rules storage backend."""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, runtime_checkable

from rulesync.schemas.rules import RuleGroup, RuleGroups


@runtime_checkable
class RulesLister(Protocol):
    def list_rule_groups(self, tenant: str) -> RuleGroups:
        """Return every rule group of `tenant`, in backend order."""
        ...


@runtime_checkable
class RulesGetter(Protocol):
    def get_rules(self, tenant: str, name: str) -> RuleGroup:
        """Return one rule group. Raises rulesync.errors.RuleNotFound when it does not exist."""
        ...


@runtime_checkable
class RulesWriter(Protocol):
    def create_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        """Store a new rule group; `rules` is the YAML rendering of the group's rule list."""
        ...

    def update_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        """Replace an existing rule group."""
        ...


@runtime_checkable
class RulesRepository(RulesLister, RulesGetter, RulesWriter, Protocol):
    """All operations a conformant repository implements."""

    def ping(self) -> bool:
        """Report whether the backend is reachable."""
        ...
