from __future__ import annotations

import logging
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from fastapi.responses import HTMLResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from rulesync.authentication import resolve_tenant
from rulesync.errors import AuthContextMissing, BackendError, RuleNotFound, SerializationError
from rulesync.schemas.common import ErrorResponse
from rulesync.schemas.rules import dump_yaml
from rulesync.services import rules_service
from rulesync.state import get_state

logger = logging.getLogger(__name__)

YAML_MEDIA_TYPE = "application/yaml"

router = APIRouter(
    prefix="/api/metrics/v1/{tenant}",
    tags=["Rules"],
    dependencies=[Depends(resolve_tenant)],
)

_ERROR_RESPONSES = {404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _tenant_or_500(request: Request, *, with_id: bool = True) -> rules_service.TenantContext:
    try:
        return rules_service.require_tenant(request, with_id=with_id)
    except AuthContextMissing as exc:
        logger.warning("%s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _yaml_or_500(value) -> bytes:
    try:
        return dump_yaml(value)
    except SerializationError as exc:
        logger.warning("failed to marshal rules: %s", exc)
        raise HTTPException(status_code=500, detail="failed to marshal rules") from exc


@router.get(
    "/rules",
    response_class=Response,
    responses={200: {"content": {YAML_MEDIA_TYPE: {}}}, 500: {"model": ErrorResponse}},
    summary="List rule groups",
    description="Return every rule group of the tenant as YAML, with the tenant label set on each rule.",
    operation_id="list_rule_groups",
)
def list_rules(request: Request) -> Response:
    """List the tenant's rule groups."""
    tenant = _tenant_or_500(request)
    state = get_state(request.app)
    try:
        groups = rules_service.list_rule_groups(state.repository, tenant, state.config.tenant_label)
    except BackendError as exc:
        logger.debug("failed to list rules: %s", exc.__cause__ or exc)
        raise HTTPException(status_code=500, detail="failed to list rules") from exc
    return Response(content=_yaml_or_500(groups), media_type=YAML_MEDIA_TYPE)


@router.get(
    "/rules/{name}",
    response_class=Response,
    responses={200: {"content": {YAML_MEDIA_TYPE: {}}}, **_ERROR_RESPONSES},
    summary="Get rule group",
    description="Return one rule group as YAML, with the tenant label set on each rule.",
    operation_id="get_rule_group",
)
def get_rules(request: Request, name: str = Path(..., description="Rule group name.")) -> Response:
    """Fetch a single rule group by name."""
    tenant = _tenant_or_500(request)
    state = get_state(request.app)
    try:
        group = rules_service.get_rules(state.repository, tenant, state.config.tenant_label, name)
    except RuleNotFound as exc:
        logger.debug("rule not found: %s", name)
        raise HTTPException(status_code=404, detail="rule not found") from exc
    except BackendError as exc:
        logger.warning("failed to get rules: %s", exc.__cause__ or exc)
        raise HTTPException(status_code=500, detail="failed to get rules") from exc
    return Response(content=_yaml_or_500(group), media_type=YAML_MEDIA_TYPE)


@router.get(
    "/rules/{name}/edit",
    response_class=HTMLResponse,
    responses=_ERROR_RESPONSES,
    summary="Edit rule group",
    description="HTML form pre-filled with the stored rule group; submitting it creates the group.",
    operation_id="edit_rule_group",
)
def edit_rules(request: Request, name: str = Path(..., description="Rule group name.")) -> HTMLResponse:
    """Render the edit form for a rule group."""
    tenant = _tenant_or_500(request, with_id=False)
    state = get_state(request.app)
    try:
        page = rules_service.render_edit_form(state.repository, tenant, name)
    except RuleNotFound as exc:
        logger.debug("rule not found: %s", name)
        raise HTTPException(status_code=404, detail="rule not found") from exc
    except BackendError as exc:
        logger.warning("failed to get rules: %s", exc.__cause__ or exc)
        raise HTTPException(status_code=500, detail="failed to get rules") from exc
    except SerializationError as exc:
        logger.warning("failed to marshal rules: %s", exc)
        raise HTTPException(status_code=500, detail="failed to marshal rules") from exc
    return HTMLResponse(content=page)


async def _read_rule_group_body(request: Request) -> bytes:
    try:
        body = await request.body()
    except ClientDisconnect as exc:
        logger.warning("failed to read rules from request body: %s", exc)
        raise HTTPException(status_code=500, detail="failed to read rules from request body") from exc

    # Submissions from the HTML edit form arrive url-encoded with the YAML in the `rulegroup` field.
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        fields = parse_qs(body.decode("utf-8", errors="replace"))
        return (fields.get("rulegroup") or [""])[0].encode("utf-8")
    return body


async def _write_rules(request: Request, name: str, *, create: bool) -> Response:
    tenant = _tenant_or_500(request)
    body = await _read_rule_group_body(request)
    state = get_state(request.app)
    try:
        await run_in_threadpool(
            rules_service.write_rule_group,
            state.repository,
            tenant,
            state.config.tenant_label,
            name,
            body,
            create=create,
        )
    except SerializationError as exc:
        logger.warning("failed to unmarshal YAML to rule group: %s", exc)
        raise HTTPException(status_code=500, detail="failed to unmarshal YAML to rule group") from exc
    except BackendError as exc:
        msg = "failed to create rules" if create else "failed to update rules"
        logger.warning("%s: %s", msg, exc.__cause__ or exc)
        raise HTTPException(status_code=500, detail=msg) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/rules/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={500: {"model": ErrorResponse}},
    summary="Create rule group",
    description="Create a rule group from a YAML body. The tenant label on every rule is overwritten.",
    operation_id="create_rule_group",
)
async def create_rules(request: Request, name: str = Path(..., description="Rule group name.")) -> Response:
    """Create a rule group."""
    return await _write_rules(request, name, create=True)


@router.put(
    "/rules/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses={500: {"model": ErrorResponse}},
    summary="Update rule group",
    description="Replace a rule group from a YAML body. The tenant label on every rule is overwritten.",
    operation_id="update_rule_group",
)
async def update_rules(request: Request, name: str = Path(..., description="Rule group name.")) -> Response:
    """Replace a rule group."""
    return await _write_rules(request, name, create=False)
