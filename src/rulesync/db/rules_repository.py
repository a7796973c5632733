from __future__ import annotations

import logging
from datetime import timedelta

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from rulesync.db.mongo import MongoManager
from rulesync.errors import BackendError, RuleNotFound, SerializationError
from rulesync.schemas.common import format_duration, parse_duration, utc_now
from rulesync.schemas.rules import RuleGroup, RuleGroups, load_rules

logger = logging.getLogger(__name__)


def _doc_to_group(doc: dict) -> RuleGroup:
    try:
        interval = parse_duration(doc.get("interval") or "0s")
    except ValueError as exc:
        raise SerializationError(f"stored interval is invalid: {exc}") from exc
    return RuleGroup(
        name=doc["name"],
        interval=interval,
        rules=load_rules(doc.get("rules") or ""),
    )


class MongoRulesRepository:
    """
    Rules repository storing one document per (tenant, rule group) in the `rule_groups` collection.

    Documents look like {tenant, name, interval, rules, createdAt, updatedAt} where `interval` is a
    duration string and `rules` is the YAML text of the group's rule list as received from the API.
    """

    def __init__(self, mongo: MongoManager):
        self._mongo = mongo

    def ping(self) -> bool:
        return self._mongo.ping()

    # PUBLIC_INTERFACE
    def list_rule_groups(self, tenant: str) -> RuleGroups:
        """List a tenant's rule groups in insertion order."""
        cols = self._mongo.collections()
        try:
            cursor = cols.rule_groups.find({"tenant": tenant}, projection={"_id": 0})
            docs = list(cursor.sort([("createdAt", ASCENDING), ("_id", ASCENDING)]))
        except PyMongoError as exc:
            raise BackendError(f"failed to list rule groups for tenant {tenant}") from exc
        return RuleGroups(groups=[_doc_to_group(d) for d in docs])

    # PUBLIC_INTERFACE
    def get_rules(self, tenant: str, name: str) -> RuleGroup:
        """Fetch a single rule group; raises RuleNotFound when absent."""
        cols = self._mongo.collections()
        try:
            doc = cols.rule_groups.find_one({"tenant": tenant, "name": name}, projection={"_id": 0})
        except PyMongoError as exc:
            raise BackendError(f"failed to get rule group {name} for tenant {tenant}") from exc
        if not doc:
            raise RuleNotFound(name)
        return _doc_to_group(doc)

    # PUBLIC_INTERFACE
    def create_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        """Insert a new rule group; fails if the tenant already has one with this name."""
        cols = self._mongo.collections()
        now = utc_now()
        doc = {
            "tenant": tenant,
            "name": name,
            "interval": format_duration(interval),
            "rules": rules.decode("utf-8"),
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            cols.rule_groups.insert_one(doc)
        except DuplicateKeyError as exc:
            raise BackendError(f"rule group {name} already exists for tenant {tenant}") from exc
        except PyMongoError as exc:
            raise BackendError(f"failed to create rule group {name} for tenant {tenant}") from exc
        logger.info("Created rule group tenant=%s name=%s", tenant, name)

    # PUBLIC_INTERFACE
    def update_rule(self, tenant: str, name: str, interval: timedelta, rules: bytes) -> None:
        """Replace the interval and rules of an existing rule group."""
        cols = self._mongo.collections()
        try:
            res = cols.rule_groups.update_one(
                {"tenant": tenant, "name": name},
                {
                    "$set": {
                        "interval": format_duration(interval),
                        "rules": rules.decode("utf-8"),
                        "updatedAt": utc_now(),
                    }
                },
                upsert=False,
            )
        except PyMongoError as exc:
            raise BackendError(f"failed to update rule group {name} for tenant {tenant}") from exc
        if res.matched_count == 0:
            raise RuleNotFound(name)
        logger.info("Updated rule group tenant=%s name=%s", tenant, name)
