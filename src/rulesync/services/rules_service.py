from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from jinja2 import Environment

from rulesync.authentication import get_tenant, get_tenant_id
from rulesync.errors import AuthContextMissing, BackendError, RuleNotFound
from rulesync.schemas.rules import RuleGroup, RuleGroups, dump_yaml, load_rule_group
from rulesync.services.repository import RulesGetter, RulesLister, RulesWriter
from rulesync.services.tenant_labels import stamp_rule_group, stamp_rule_groups, stamp_tenant_label

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Tenant identity resolved for one request."""

    name: str
    id: Optional[str] = None


# PUBLIC_INTERFACE
def require_tenant(request: Request, *, with_id: bool = True) -> TenantContext:
    """
    Read the tenant identity from the request context.

    Raises AuthContextMissing when the tenant name, or (with_id=True) the tenant id, is absent.
    """
    tenant = get_tenant(request)
    if not tenant:
        raise AuthContextMissing("failed to get tenant")
    tenant_id = get_tenant_id(request)
    if with_id and not tenant_id:
        raise AuthContextMissing("error finding tenant ID")
    return TenantContext(name=tenant, id=tenant_id)


# PUBLIC_INTERFACE
def list_rule_groups(lister: RulesLister, tenant: TenantContext, label: str) -> RuleGroups:
    """List the tenant's rule groups with the ownership label stamped on every rule."""
    try:
        groups = lister.list_rule_groups(tenant.name)
    except BackendError:
        raise
    except Exception as exc:
        raise BackendError("failed to list rules") from exc
    return stamp_rule_groups(groups, label, tenant.id or "")


# PUBLIC_INTERFACE
def get_rules(getter: RulesGetter, tenant: TenantContext, label: str, name: str) -> RuleGroup:
    """Fetch one rule group with the ownership label stamped. RuleNotFound propagates unchanged."""
    group = _get_group(getter, tenant.name, name)
    return stamp_rule_group(group, label, tenant.id or "")


def _get_group(getter: RulesGetter, tenant: str, name: str) -> RuleGroup:
    try:
        return getter.get_rules(tenant, name)
    except (RuleNotFound, BackendError):
        raise
    except Exception as exc:
        raise BackendError("failed to get rules") from exc


# PUBLIC_INTERFACE
def write_rule_group(
    writer: RulesWriter,
    tenant: TenantContext,
    label: str,
    name: str,
    body: bytes,
    *,
    create: bool,
) -> None:
    """
    Validate a YAML rule group body, force the ownership label on its rules and store it.

    `create` selects RulesWriter.create_rule (POST) over RulesWriter.update_rule (PUT); both receive
    the same labeled payload. The rule group name always comes from the URL, never from the body.
    Raises SerializationError for a malformed body and BackendError when the repository fails.
    """
    group = load_rule_group(body)
    rules = dump_yaml(stamp_tenant_label(group.rules, label, tenant.id or ""))

    write = writer.create_rule if create else writer.update_rule
    try:
        write(tenant.name, name, group.interval, rules)
    except BackendError:
        raise
    except Exception as exc:
        raise BackendError("failed to create rules" if create else "failed to update rules") from exc


# Autoescaped; compiled at import so a broken template fails startup rather than the first edit request.
_TEMPLATES = Environment(autoescape=True)
_EDIT_HTML = _TEMPLATES.from_string(
    """
<html lang="en">
<head>
    <title>Edit Rules - Observatorium</title>
</head>
<body>
    <h3>Edit Rule {{ name }}</h3>
    <form action="/api/metrics/v1/{{ tenant|urlencode }}/rules/{{ name|urlencode }}" method="post">
        <textarea cols="120" rows="30" name="rulegroup">{{ rules }}</textarea><br>
        <button type="submit">Update</button>
    </form>
</body>
</html>
"""
)


# PUBLIC_INTERFACE
def render_edit_form(getter: RulesGetter, tenant: TenantContext, name: str) -> str:
    """Render a stored rule group, unlabeled, into an HTML form that posts back to the write endpoint."""
    group = _get_group(getter, tenant.name, name)
    return _EDIT_HTML.render(name=name, tenant=tenant.name, rules=dump_yaml(group).decode("utf-8"))
