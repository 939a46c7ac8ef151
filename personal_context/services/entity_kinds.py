"""
Entity kinds and their storage layout.

Each of the five kinds is described once by a KindSpec: which DTO keys live in
plaintext columns, which are sealed together into an encrypted column, which
columns free-text search covers, and which extra filters get() accepts. The
entity store has a single implementation per operation and reads everything
kind-specific from here; KIND_SPECS must cover every EntityKind.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from personal_context.errors import InvalidTypeError
from personal_context.models import CalendarItem, Contact, Email, OAuthToken, User


class EntityKind(str, Enum):
    USER = "user"
    CONTACT = "contact"
    EMAIL = "email"
    CALENDAR_ITEM = "calendar-item"
    OAUTH_TOKEN = "oauth-token"

    @classmethod
    def parse(cls, tag: "str | EntityKind") -> "EntityKind":
        """Resolve an exact kind tag. Raises InvalidTypeError for anything else."""
        if isinstance(tag, cls):
            return tag
        try:
            return cls(tag)
        except ValueError:
            raise InvalidTypeError(f"Unknown entity type: {tag}")

    @property
    def plural(self) -> str:
        return f"{self.value}s"


@dataclass(frozen=True)
class Attribute:
    """
    One DTO key. column is the plaintext column it maps to, or None when the key
    lives inside a sealed column. as_json stores a list as JSON text.
    """
    key: str
    column: str | None = None
    required: bool = False
    default: Callable[[], Any] | None = None
    as_json: bool = False
    mutable: bool = True


@dataclass(frozen=True)
class Sealed:
    """
    An encrypted column and the DTO keys it carries. With single=True the
    envelope holds the bare value of keys[0]; otherwise a {key: value} bundle.
    """
    column: str
    keys: tuple[str, ...]
    single: bool = False

    def pack(self, values: Mapping[str, Any]) -> Any:
        if self.single:
            return values.get(self.keys[0])
        return {k: values.get(k) for k in self.keys}

    def unpack(self, payload: Any) -> dict[str, Any]:
        if self.single:
            return {self.keys[0]: payload}
        payload = payload or {}
        return {k: payload.get(k) for k in self.keys}


@dataclass(frozen=True)
class Filter:
    column: str
    # eq | gte | lte | json_contains
    op: str


@dataclass(frozen=True)
class KindSpec:
    kind: EntityKind
    model: type
    attributes: tuple[Attribute, ...]
    sealed: tuple[Sealed, ...]
    search_columns: tuple[str, ...]
    filters: Mapping[str, Filter] = field(default_factory=dict)
    owned: bool = True

    def attribute(self, key: str) -> Attribute | None:
        for attr in self.attributes:
            if attr.key == key:
                return attr
        return None

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(a.key for a in self.attributes)

    @property
    def plain(self) -> tuple[Attribute, ...]:
        return tuple(a for a in self.attributes if a.column is not None)


def _owner() -> Attribute:
    return Attribute("ownerUserId", "user_id", required=True, mutable=False)


USER_SPEC = KindSpec(
    kind=EntityKind.USER,
    model=User,
    attributes=(
        Attribute("email", "email", required=True),
        Attribute("name", "name", required=True),
        Attribute("preferences", default=dict),
    ),
    sealed=(Sealed("encrypted_preferences", ("preferences",), single=True),),
    search_columns=("email", "name"),
    owned=False,
)

CONTACT_SPEC = KindSpec(
    kind=EntityKind.CONTACT,
    model=Contact,
    attributes=(
        _owner(),
        Attribute("firstName", "first_name", required=True),
        Attribute("lastName", "last_name", required=True),
        Attribute("emails", default=list),
        Attribute("phoneNumbers", default=list),
        Attribute("addresses", default=list),
        Attribute("relationships", default=list),
        Attribute("metadata", default=dict),
    ),
    sealed=(
        Sealed(
            "encrypted_data",
            ("emails", "phoneNumbers", "addresses", "relationships", "metadata"),
        ),
    ),
    search_columns=("first_name", "last_name"),
)

EMAIL_SPEC = KindSpec(
    kind=EntityKind.EMAIL,
    model=Email,
    attributes=(
        _owner(),
        Attribute("subject", "subject", required=True),
        Attribute("body", required=True),
        Attribute("sender", "sender", required=True),
        Attribute("recipients", "recipients", required=True, as_json=True),
        Attribute("threadId", "thread_id"),
        Attribute("labels", "labels", default=list, as_json=True),
        Attribute("attachments", default=list),
    ),
    sealed=(
        Sealed("encrypted_body", ("body",), single=True),
        Sealed("encrypted_attachments", ("attachments",), single=True),
    ),
    search_columns=("subject", "sender"),
    filters={
        "threadId": Filter("thread_id", "eq"),
        "label": Filter("labels", "json_contains"),
    },
)

CALENDAR_ITEM_SPEC = KindSpec(
    kind=EntityKind.CALENDAR_ITEM,
    model=CalendarItem,
    attributes=(
        _owner(),
        Attribute("title", "title", required=True),
        Attribute("description", default=str),
        Attribute("startTime", "start_time", required=True),
        Attribute("endTime", "end_time", required=True),
        Attribute("location", "location"),
        Attribute("attendees", "attendees", default=list, as_json=True),
        Attribute("recurrence", "recurrence"),
        Attribute("metadata", default=dict),
    ),
    sealed=(
        Sealed("encrypted_description", ("description",), single=True),
        Sealed("encrypted_metadata", ("metadata",), single=True),
    ),
    search_columns=("title", "location"),
    filters={
        "startsAfter": Filter("start_time", "gte"),
        "endsBefore": Filter("end_time", "lte"),
    },
)

OAUTH_TOKEN_SPEC = KindSpec(
    kind=EntityKind.OAUTH_TOKEN,
    model=OAuthToken,
    attributes=(
        _owner(),
        Attribute("provider", "provider", required=True),
        Attribute("accessToken", required=True),
        Attribute("refreshToken"),
        Attribute("scopes", "scopes", default=list, as_json=True),
        Attribute("expiresAt", "expires_at", required=True),
        Attribute("metadata", default=dict),
    ),
    sealed=(Sealed("encrypted_tokens", ("accessToken", "refreshToken", "metadata")),),
    search_columns=("provider",),
    filters={"provider": Filter("provider", "eq")},
)

KIND_SPECS: dict[EntityKind, KindSpec] = {
    spec.kind: spec
    for spec in (USER_SPEC, CONTACT_SPEC, EMAIL_SPEC, CALENDAR_ITEM_SPEC, OAUTH_TOKEN_SPEC)
}


def spec_for(kind: "str | EntityKind") -> KindSpec:
    """Look up the layout for a kind tag; unknown tags raise InvalidTypeError."""
    return KIND_SPECS[EntityKind.parse(kind)]
