# Vault API Routes
#
# REST endpoints over the group hierarchy, items and reference resolution.
# All endpoints require session auth (verify_session_token).
#
# Endpoints:
#   GET    /api/groups                    - List groups (all, roots, or children)
#   POST   /api/groups                    - Create a group
#   GET    /api/groups/{id}               - Group details
#   PATCH  /api/groups/{id}               - Rename / recolor / re-parent
#   DELETE /api/groups/{id}               - Soft delete (?final=true: hard delete)
#   GET    /api/groups/{id}/breadcrumbs   - Root-first ancestor chain
#   GET    /api/groups/{id}/descendants   - Every group below
#   GET    /api/groups/{id}/items         - Item memberships of a group
#   POST   /api/trash                     - Ensure the trash root exists
#   POST   /api/move                      - Move groups/items into a group
#   POST   /api/clone                     - Clone groups/items into a group
#   GET    /api/items                     - List items (secrets omitted)
#   GET    /api/items/unfiled             - Memberships with no group
#   POST   /api/items                     - Create an item
#   GET    /api/items/{id}                - Item details (?resolved=true)
#   DELETE /api/items/{id}                - Delete an item
#   GET    /api/items/{id}/attachments    - Attachment metadata
#   POST   /api/items/{id}/attachments    - Attach base64 content
#   POST   /api/resolve                   - Resolve one raw value
#
# Vault errors map to HTTP: NotFound 404, ConstraintViolation 400,
# CycleDetected 409, NotInitialized 503.

import base64
import binascii
import logging
from typing import Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from .security import verify_session_token
from ..core import EventSeverity, EventType, get_audit_logger
from ..vault import (
    Attachment,
    CloneOptions,
    ConstraintViolation,
    CycleDetected,
    ItemDetails,
    KeyValue,
    NotFound,
    NotInitialized,
    VaultError,
)
from ..vault.services import get_vault_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["vault"])

_STATUS_BY_ERROR = (
    (NotFound, 404),
    (CycleDetected, 409),
    (ConstraintViolation, 400),
    (NotInitialized, 503),
)


def _http_error(exc: VaultError) -> HTTPException:
    """Translate a vault error into the matching HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500

    if status_code >= 500:
        logger.error("Vault unavailable: %s", exc)
        get_audit_logger().log_event(
            event_type=EventType.VAULT_ERROR,
            severity=EventSeverity.CRITICAL,
            message=f"Vault: {type(exc).__name__}",
            details={"error": str(exc)},
        )
    return HTTPException(status_code, str(exc))


# ── Request/Response Models ──────────────────────────────────────────


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    icon: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    order: Optional[int] = None


class UpdateGroupRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    parent_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=1000)
    icon: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    order: Optional[int] = None


class KeyValueModel(BaseModel):
    key: str = Field(..., min_length=1, max_length=200)
    value: Optional[str] = None


class CreateItemRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    note: Optional[str] = None
    otp_secret: Optional[str] = None
    tags: Optional[str] = Field(None, max_length=500, description="Comma-separated tags")
    icon: Optional[str] = None
    color: Optional[str] = None
    group_id: Optional[str] = None
    key_values: List[KeyValueModel] = Field(default_factory=list)


class AddAttachmentRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    content_b64: str = Field(..., description="Base64-encoded file content")


class MoveRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    target_group_id: Optional[str] = None


class CloneRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)
    target_group_id: Optional[str] = None
    include_history: bool = False
    reference_credentials: bool = True
    title_suffix: Optional[str] = Field(None, max_length=100)
    deep: bool = False


class ResolveRequest(BaseModel):
    value: Optional[str] = None


# ── Groups ───────────────────────────────────────────────────────────


@router.get("/groups")
async def list_groups(
    parent_id: Optional[str] = Query(None, description="Only children of this group"),
    roots: bool = Query(False, description="Only root groups"),
    _token: str = Depends(verify_session_token),
):
    """List groups ordered by their sort order."""
    tree = get_vault_services().tree
    try:
        if roots:
            groups = tree.list(parent_id=None)
        elif parent_id is not None:
            groups = tree.list(parent_id=parent_id)
        else:
            groups = tree.list()
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"groups": [g.to_dict() for g in groups], "total": len(groups)}


@router.post("/groups", status_code=201)
async def create_group(
    req: CreateGroupRequest,
    _token: str = Depends(verify_session_token),
):
    """Create a group under parent_id (root when omitted)."""
    try:
        group = get_vault_services().tree.create(**req.model_dump())
    except VaultError as exc:
        raise _http_error(exc) from exc
    return group.to_dict()


@router.get("/groups/{group_id}")
async def get_group(
    group_id: str,
    _token: str = Depends(verify_session_token),
):
    try:
        group = get_vault_services().tree.require(group_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return group.to_dict()


@router.patch("/groups/{group_id}")
async def update_group(
    group_id: str,
    req: UpdateGroupRequest,
    _token: str = Depends(verify_session_token),
):
    """Update the fields present in the body; parent_id null moves to root."""
    changes = req.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(400, "No fields to update")
    try:
        group = get_vault_services().tree.update(group_id, **changes)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return group.to_dict()


@router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str,
    final: bool = Query(False, description="Delete permanently instead of trashing"),
    _token: str = Depends(verify_session_token),
):
    """Move a group to the trash, or delete it for good with final=true."""
    tree = get_vault_services().tree
    try:
        if tree.get(group_id) is None:
            raise HTTPException(404, "Group not found")
        permanent = final or group_id == tree.trash_id
        tree.delete(group_id, final=final)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"deleted": True, "group_id": group_id, "final": permanent}


@router.get("/groups/{group_id}/breadcrumbs")
async def group_breadcrumbs(
    group_id: str,
    _token: str = Depends(verify_session_token),
):
    """Root-first chain of groups ending with the group itself."""
    tree = get_vault_services().tree
    try:
        tree.require(group_id)
        chain = tree.ancestor_chain(group_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"breadcrumbs": [g.to_dict() for g in chain]}


@router.get("/groups/{group_id}/descendants")
async def group_descendants(
    group_id: str,
    _token: str = Depends(verify_session_token),
):
    tree = get_vault_services().tree
    try:
        tree.require(group_id)
        groups = tree.descendants_recursive(group_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"groups": [g.to_dict() for g in groups], "total": len(groups)}


@router.get("/groups/{group_id}/items")
async def group_items(
    group_id: str,
    _token: str = Depends(verify_session_token),
):
    tree = get_vault_services().tree
    try:
        tree.require(group_id)
        memberships = tree.memberships(group_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"memberships": [m.to_dict() for m in memberships], "total": len(memberships)}


@router.post("/trash")
async def ensure_trash(
    _token: str = Depends(verify_session_token),
):
    """Create the trash root if it does not exist yet."""
    try:
        trash = get_vault_services().tree.ensure_trash()
    except VaultError as exc:
        raise _http_error(exc) from exc
    return trash.to_dict()


# ── Batch operations ─────────────────────────────────────────────────


@router.post("/move")
async def move_entities(
    req: MoveRequest,
    _token: str = Depends(verify_session_token),
):
    """Move groups and items. Per-id failures are reported, not raised."""
    try:
        result = get_vault_services().tree.move(req.ids, req.target_group_id, strict=False)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


@router.post("/clone")
async def clone_entities(
    req: CloneRequest,
    _token: str = Depends(verify_session_token),
):
    """Clone groups and items. Per-id failures are reported, not raised."""
    options = CloneOptions(
        include_history=req.include_history,
        reference_credentials=req.reference_credentials,
        title_suffix=req.title_suffix,
        deep=req.deep,
    )
    try:
        result = get_vault_services().cloner.clone_many(
            req.ids, req.target_group_id, options=options
        )
    except VaultError as exc:
        raise _http_error(exc) from exc
    return result.to_dict()


# ── Items ────────────────────────────────────────────────────────────


@router.get("/items")
async def list_items(
    _token: str = Depends(verify_session_token),
):
    """List items without their password and OTP secret."""
    try:
        items = get_vault_services().store.select_items()
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {
        "items": [i.to_dict(include_secrets=False) for i in items],
        "total": len(items),
    }


@router.get("/items/unfiled")
async def unfiled_items(
    _token: str = Depends(verify_session_token),
):
    try:
        memberships = get_vault_services().tree.memberships(None)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"memberships": [m.to_dict() for m in memberships], "total": len(memberships)}


@router.post("/items", status_code=201)
async def create_item(
    req: CreateItemRequest,
    _token: str = Depends(verify_session_token),
):
    """Create an item with its custom fields, filed in group_id."""
    services = get_vault_services()
    item_id = str(uuid4())
    details = ItemDetails(
        id=item_id,
        title=req.title,
        username=req.username,
        password=req.password,
        url=req.url,
        note=req.note,
        otp_secret=req.otp_secret,
        tags=req.tags,
        icon=req.icon,
        color=req.color,
    )
    key_values = [
        KeyValue(id=str(uuid4()), item_id=item_id, key=kv.key, value=kv.value)
        for kv in req.key_values
    ]
    try:
        if req.group_id is not None and services.tree.get(req.group_id) is None:
            raise ConstraintViolation(f"Group {req.group_id} does not exist")
        services.store.insert_item(details, key_values, group_id=req.group_id)
    except VaultError as exc:
        raise _http_error(exc) from exc

    get_audit_logger().log_vault_event(
        EventType.ITEM_CREATED,
        "item created",
        details={"item_id": item_id, "group_id": req.group_id},
    )
    data = details.to_dict()
    data["key_values"] = [kv.to_dict() for kv in key_values]
    data["group_id"] = req.group_id
    return data


@router.get("/items/{item_id}")
async def get_item(
    item_id: str,
    resolved: bool = Query(False, description="Resolve reference tokens"),
    _token: str = Depends(verify_session_token),
):
    """Item details and custom fields, raw or with references resolved."""
    services = get_vault_services()
    try:
        if resolved:
            data = services.resolver.resolve_item(item_id)
        else:
            item = services.store.select_item(item_id)
            if item is None:
                raise NotFound(f"Item {item_id} not found")
            data = item.to_dict()
            data["key_values"] = [
                {"id": kv.id, "key": kv.key, "value": kv.value}
                for kv in services.store.select_key_values(item_id)
            ]
        membership = services.store.select_membership(item_id)
    except VaultError as exc:
        raise _http_error(exc) from exc

    data["group_id"] = membership.group_id if membership else None
    return data


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: str,
    _token: str = Depends(verify_session_token),
):
    try:
        deleted = get_vault_services().store.delete_item(item_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    if not deleted:
        raise HTTPException(404, "Item not found")

    get_audit_logger().log_event(
        event_type=EventType.ITEM_DELETED,
        severity=EventSeverity.ALERT,
        message="Vault: item deleted",
        details={"item_id": item_id},
    )
    return {"deleted": True, "item_id": item_id}


@router.get("/items/{item_id}/attachments")
async def list_attachments(
    item_id: str,
    _token: str = Depends(verify_session_token),
):
    store = get_vault_services().store
    try:
        if store.select_item(item_id) is None:
            raise NotFound(f"Item {item_id} not found")
        attachments = store.select_attachments(item_id)
    except VaultError as exc:
        raise _http_error(exc) from exc
    return {"attachments": [a.to_dict() for a in attachments], "total": len(attachments)}


@router.post("/items/{item_id}/attachments", status_code=201)
async def add_attachment(
    item_id: str,
    req: AddAttachmentRequest,
    _token: str = Depends(verify_session_token),
):
    """Store the content once per hash and attach it to the item."""
    try:
        content = base64.b64decode(req.content_b64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(400, "content_b64 is not valid base64")

    store = get_vault_services().store
    try:
        if store.select_item(item_id) is None:
            raise NotFound(f"Item {item_id} not found")
        binary_hash = store.insert_binary(content)
        attachment = store.insert_attachment(
            Attachment(
                id=str(uuid4()),
                item_id=item_id,
                binary_hash=binary_hash,
                file_name=req.file_name,
            )
        )
    except VaultError as exc:
        raise _http_error(exc) from exc
    return attachment.to_dict()


# ── References ───────────────────────────────────────────────────────


@router.post("/resolve")
async def resolve_value(
    req: ResolveRequest,
    _token: str = Depends(verify_session_token),
):
    """Resolve one raw value. Unresolvable tokens come back unchanged."""
    try:
        resolution = get_vault_services().resolver.resolve_detailed(req.value)
    except VaultError as exc:
        raise _http_error(exc) from exc

    result: Dict[str, object] = {
        "value": resolution.value,
        "complete": resolution.complete,
        "depth": resolution.depth,
    }
    if resolution.error is not None:
        result["error"] = str(resolution.error)
    return result
