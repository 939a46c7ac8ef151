"""
Tool router: list tools and dispatch tool calls to the entity store.

Every call goes through the same steps, in order:
  1. resolve the tool by name,
  2. validate arguments against the tool's pydantic model (camelCase keys,
     unknown keys rejected),
  3. resolve the entity kind and its scope ({read|write}:{kind}s); update-entity
     data is checked against that kind's fields, all optional,
  4. verify the bearer token and the scope (AuthGate),
  5. call the store and format the result as text.

Results always use the tool-call envelope
    {"content": [{"type": "text", "text": ...}], "isError": bool}
so failures are reported in-band. Authorization failures get their own
wording and never reach the store.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model
from pydantic.alias_generators import to_camel

from personal_context.auth import authorize, get_authorization, get_gate, get_store
from personal_context.errors import AuthError, AuthErrorCode, PersonalContextError
from personal_context.security import AuthGate, scope_for
from personal_context.services.entity_kinds import EntityKind
from personal_context.services.entity_store import EntityStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tools")


# --- Argument models ---


class ToolParams(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def entity_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Address(ToolParams):
    type: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""


class Attachment(ToolParams):
    id: str
    name: str
    mime_type: str
    size: int = Field(..., ge=0)
    url: str


class AddUserParams(ToolParams):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    preferences: dict[str, Any] = Field(default_factory=dict)


class AddContactParams(ToolParams):
    owner_user_id: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., max_length=255)
    emails: list[str] = Field(default_factory=list)
    phone_numbers: list[str] = Field(default_factory=list)
    addresses: list[Address] = Field(default_factory=list)
    relationships: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddEmailParams(ToolParams):
    owner_user_id: str = Field(..., min_length=1)
    subject: str
    body: str
    sender: str = Field(..., min_length=1)
    recipients: list[str]
    thread_id: str | None = None
    labels: list[str] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)


class AddCalendarItemParams(ToolParams):
    owner_user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    start_time: str = Field(..., min_length=1)
    end_time: str = Field(..., min_length=1)
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    recurrence: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddOAuthTokenParams(ToolParams):
    owner_user_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1, max_length=64)
    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    scopes: list[str] = Field(default_factory=list)
    expires_at: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _partial(model: type[ToolParams]) -> type[ToolParams]:
    """Same fields as an add model, every one optional and defaulting to None."""
    fields = {name: (info.annotation | None, None) for name, info in model.model_fields.items()}
    return create_model(model.__name__.replace("Add", "Update", 1), __base__=ToolParams, **fields)


# Shape checks for update-entity data, per kind
UPDATE_MODELS: dict[EntityKind, type[ToolParams]] = {
    EntityKind.USER: _partial(AddUserParams),
    EntityKind.CONTACT: _partial(AddContactParams),
    EntityKind.EMAIL: _partial(AddEmailParams),
    EntityKind.CALENDAR_ITEM: _partial(AddCalendarItemParams),
    EntityKind.OAUTH_TOKEN: _partial(AddOAuthTokenParams),
}


class UpdateEntityParams(ToolParams):
    type: str
    id: str = Field(..., min_length=1)
    data: dict[str, Any]

    def data_for(self, kind: EntityKind) -> dict[str, Any]:
        """Validate data against the kind's fields. Only keys the caller sent are returned."""
        partial = UPDATE_MODELS[kind].model_validate(self.data)
        return partial.model_dump(by_alias=True, include=partial.model_fields_set)


class GetEntityParams(ToolParams):
    type: str
    id: str | None = None
    owner_user_id: str | None = None
    query: str | None = None
    filters: dict[str, str] = Field(default_factory=dict)

    def query_data(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"type"})


class CallToolBody(BaseModel):
    """Request body for one tool call."""
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


# --- Tool registry ---


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    params: type[ToolParams]
    # add | update | get
    action: str
    # Fixed kind for add-* tools; update/get take it from the "type" argument
    kind: EntityKind | None = None

    def to_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.params.model_json_schema(by_alias=True),
        }


_KIND_TAGS = " | ".join(k.value for k in EntityKind)

TOOLS: dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool("add-user", "Add a user; preferences are stored encrypted",
             AddUserParams, "add", EntityKind.USER),
        Tool("add-contact", "Add a contact owned by a user; contact details are stored encrypted",
             AddContactParams, "add", EntityKind.CONTACT),
        Tool("add-email", "Add an email; body and attachments are stored encrypted",
             AddEmailParams, "add", EntityKind.EMAIL),
        Tool("add-calendar-item", "Add a calendar item; description and metadata are stored encrypted",
             AddCalendarItemParams, "add", EntityKind.CALENDAR_ITEM),
        Tool("add-oauth-token", "Store an OAuth token; access/refresh tokens are stored encrypted",
             AddOAuthTokenParams, "add", EntityKind.OAUTH_TOKEN),
        Tool("update-entity", f"Merge fields into an existing entity (type: {_KIND_TAGS})",
             UpdateEntityParams, "update"),
        Tool("get-entity", f"Find entities by id, owner, text query or filters (type: {_KIND_TAGS})",
             GetEntityParams, "get"),
    )
}

_VERBS = {"add": "add", "update": "update", "get": "retrieve"}


def _result(text: str, is_error: bool = False) -> dict:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def _validation_summary(exc: ValidationError, prefix: tuple = ()) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in prefix + err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )


def dispatch(tool: Tool, arguments: dict[str, Any], store: EntityStore, gate: AuthGate, raw_token: str) -> dict:
    """Run one validated-then-authorized tool call and format its text result."""
    try:
        params = tool.params.model_validate(arguments)
    except ValidationError as e:
        return _result(f"Invalid input for {tool.name}: {_validation_summary(e)}", is_error=True)

    verb = _VERBS[tool.action]
    label = tool.kind.value if tool.kind else "entity"
    try:
        kind = tool.kind or EntityKind.parse(params.type)
        label = kind.value
        scope = scope_for("read" if tool.action == "get" else "write", kind.value)
        if tool.action == "update":
            try:
                data = params.data_for(kind)
            except ValidationError as e:
                summary = _validation_summary(e, prefix=("data",))
                return _result(f"Invalid input for {tool.name}: {summary}", is_error=True)
        authorize(gate, raw_token, scope)

        if tool.action == "add":
            return _result(json.dumps(store.add(kind, params.entity_data()), indent=2))
        if tool.action == "update":
            return _result(json.dumps(store.update(kind, params.id, data), indent=2))
        found = store.get(kind, params.query_data())
        if not found:
            return _result(f"No matching {kind.plural} found")
        return _result(json.dumps(found, indent=2))
    except AuthError as e:
        logger.warning("Rejected %s: %s", tool.name, e.code.value)
        if e.code == AuthErrorCode.INSUFFICIENT_SCOPE:
            return _result(f"Forbidden: missing scope {scope}", is_error=True)
        return _result("Unauthorized: invalid or expired token", is_error=True)
    except PersonalContextError as e:
        logger.info("%s failed: %s", tool.name, e.code)
        return _result(f"Failed to {verb} {label}: {e.message}", is_error=True)


# --- Endpoints ---


@router.get("")
def list_tools():
    """Tool definitions with JSON schemas for their arguments."""
    return {"tools": [tool.to_definition() for tool in TOOLS.values()]}


@router.post("/call")
def call_tool(
    body: CallToolBody,
    raw_token: str = Depends(get_authorization),
    store: EntityStore = Depends(get_store),
    gate: AuthGate = Depends(get_gate),
):
    """
    Run one tool. The bearer token comes from the Authorization header and is
    checked against the scope the tool needs before the store is touched.
    """
    tool = TOOLS.get(body.name)
    if tool is None:
        return _result(f"Unknown tool: {body.name}", is_error=True)
    return dispatch(tool, body.arguments, store, gate, raw_token)
