"""
Encrypted entity store: add / update / get over the five entity kinds.

Business logic separated from the tool layer. One implementation per
operation, driven by the KindSpec of the requested kind:

- add: validate and default the input, generate id and timestamps, seal each
  encrypted column under a fresh IV, insert, commit, return the DTO.
- update: load, decrypt, shallow-merge the partial data, re-seal every
  encrypted column, write only the plaintext columns present (COALESCE-style),
  refresh updatedAt, commit, return the merged DTO.
- get: AND of exact id / ownerUserId matches, a case-insensitive substring
  search over the kind's search columns and kind-specific filters. Rows come
  back in storage order; no sort is applied.

Each call is one session and one commit. Database failures roll back and raise
StoreError; decryption failures raise DecryptError. Nothing is swallowed.
Access to the single connection is serialized with a lock.
"""
import json
import logging
import secrets
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError

from personal_context.config import StoreConfig
from personal_context.crypto import FieldCipher
from personal_context.database import create_db_engine, create_session_factory, init_schema
from personal_context.errors import InvalidInputError, NotFoundError, StoreError
from personal_context.services.entity_kinds import EntityKind, KindSpec, spec_for

logger = logging.getLogger(__name__)

ID_BYTES = 16

# Keys every DTO carries that callers can never set
SYSTEM_KEYS = ("id", "createdAt", "updatedAt")

QUERY_KEYS = {"id", "ownerUserId", "query", "filters"}

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def new_id() -> str:
    return secrets.token_hex(ID_BYTES)


def utc_timestamp(after: str | None = None) -> str:
    """
    Current UTC time as a fixed-width ISO-8601 string. When `after` is given the
    result is strictly later than it, even if the clock has not advanced.
    """
    now = datetime.now(UTC)
    if after:
        previous = datetime.strptime(after, _TIMESTAMP_FORMAT).replace(tzinfo=UTC)
        if now <= previous:
            now = previous + timedelta(microseconds=1)
    return now.strftime(_TIMESTAMP_FORMAT)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class EntityStore:
    """
    Owns the database handle and the field cipher for the process lifetime.
    Construct once at startup with an explicit StoreConfig; call close() once
    at shutdown.
    """

    def __init__(self, config: StoreConfig):
        self._cipher = FieldCipher(config.encryption_key)
        self._engine = create_db_engine(config.db_path)
        init_schema(self._engine)
        self._session_factory = create_session_factory(self._engine)
        self._lock = threading.Lock()
        self._closed = False
        logger.info("Entity store opened at %s", config.db_path)

    # --- lifecycle ---

    def close(self) -> None:
        """Release the database handle. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._engine.dispose()
        logger.info("Entity store closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreError("Store is closed")

    # --- row <-> DTO ---

    def _encode_plain(self, attr, value: Any) -> Any:
        if attr.as_json and value is not None:
            return json.dumps(value)
        return value

    def _decode_plain(self, attr, value: Any) -> Any:
        if attr.as_json and value is not None:
            return json.loads(value)
        return value

    def _read_values(self, spec: KindSpec, row) -> dict[str, Any]:
        """Plaintext columns plus every decrypted sealed column, keyed by DTO key."""
        values: dict[str, Any] = {}
        for attr in spec.plain:
            values[attr.key] = self._decode_plain(attr, getattr(row, attr.column))
        for sealed in spec.sealed:
            values.update(sealed.unpack(self._cipher.unseal(getattr(row, sealed.column))))
        return values

    def _to_dto(self, spec: KindSpec, entity_id: str, values: Mapping[str, Any],
                created_at: str, updated_at: str) -> dict[str, Any]:
        dto: dict[str, Any] = {"id": entity_id}
        for key in spec.keys:
            dto[key] = values.get(key)
        dto["createdAt"] = created_at
        dto["updatedAt"] = updated_at
        return dto

    def _row_to_dto(self, spec: KindSpec, row) -> dict[str, Any]:
        return self._to_dto(spec, row.id, self._read_values(spec, row), row.created_at, row.updated_at)

    # --- input handling ---

    def _reject_unknown(self, spec: KindSpec, data: Mapping[str, Any]) -> None:
        unknown = sorted(k for k in data if spec.attribute(k) is None)
        if unknown:
            raise InvalidInputError(
                f"Unknown field(s) for {spec.kind.value}: {', '.join(unknown)}"
            )

    def _new_values(self, spec: KindSpec, data: Mapping[str, Any]) -> dict[str, Any]:
        self._reject_unknown(spec, data)
        values: dict[str, Any] = {}
        missing = []
        for attr in spec.attributes:
            value = data.get(attr.key)
            if value is None:
                if attr.required:
                    missing.append(attr.key)
                    continue
                value = attr.default() if attr.default else None
            values[attr.key] = value
        if missing:
            raise InvalidInputError(
                f"Missing required field(s) for {spec.kind.value}: {', '.join(missing)}"
            )
        return values

    def _changes(self, spec: KindSpec, data: Mapping[str, Any]) -> dict[str, Any]:
        """Partial update data with None values dropped; immutable and unknown keys rejected."""
        immutable = sorted(
            k for k in data
            if k in SYSTEM_KEYS or (spec.attribute(k) is not None and not spec.attribute(k).mutable)
        )
        if immutable:
            raise InvalidInputError(f"Field(s) cannot be updated: {', '.join(immutable)}")
        self._reject_unknown(spec, data)
        return {k: v for k, v in data.items() if v is not None}

    # --- operations ---

    def add(self, kind: "str | EntityKind", data: Mapping[str, Any]) -> dict[str, Any]:
        """Create an entity and return its DTO (plaintext view) once the row is committed."""
        spec = spec_for(kind)
        self._ensure_open()
        values = self._new_values(spec, data)

        entity_id = new_id()
        now = utc_timestamp()
        columns = {attr.column: self._encode_plain(attr, values[attr.key]) for attr in spec.plain}
        for sealed in spec.sealed:
            columns[sealed.column] = self._cipher.seal(sealed.pack(values))
        row = spec.model(id=entity_id, created_at=now, updated_at=now, **columns)

        with self._lock, self._session_factory() as db:
            self._ensure_open()
            try:
                db.add(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Failed to add {spec.kind.value}") from e

        logger.debug("Added %s %s", spec.kind.value, entity_id)
        return self._to_dto(spec, entity_id, values, now, now)

    def update(self, kind: "str | EntityKind", entity_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """
        Merge partial data into an existing entity and return the merged DTO.
        Raises NotFoundError if no entity of this kind has entity_id.
        """
        spec = spec_for(kind)
        self._ensure_open()
        changes = self._changes(spec, data)

        with self._lock, self._session_factory() as db:
            self._ensure_open()
            try:
                row = db.get(spec.model, entity_id)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to load {spec.kind.value}") from e
            if row is None:
                raise NotFoundError(f"{spec.kind.value} {entity_id} not found")

            merged = self._read_values(spec, row)
            merged.update(changes)

            for attr in spec.plain:
                if attr.key in changes:
                    setattr(row, attr.column, self._encode_plain(attr, changes[attr.key]))
            # Every sealed column gets a fresh IV, changed or not
            for sealed in spec.sealed:
                setattr(row, sealed.column, self._cipher.seal(sealed.pack(merged)))
            row.updated_at = utc_timestamp(after=row.updated_at)

            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreError(f"Failed to update {spec.kind.value}") from e

            logger.debug("Updated %s %s", spec.kind.value, entity_id)
            return self._to_dto(spec, row.id, merged, row.created_at, row.updated_at)

    def _conditions(self, spec: KindSpec, query: Mapping[str, Any]) -> list:
        unknown = sorted(set(query) - QUERY_KEYS)
        if unknown:
            raise InvalidInputError(f"Unknown query field(s): {', '.join(unknown)}")

        model = spec.model
        conditions = []
        if query.get("id") is not None:
            conditions.append(model.id == query["id"])
        if query.get("ownerUserId") is not None:
            if not spec.owned:
                raise InvalidInputError(f"{spec.kind.value} has no owner")
            conditions.append(model.user_id == query["ownerUserId"])
        if query.get("query") is not None:
            pattern = f"%{_escape_like(str(query['query']))}%"
            conditions.append(or_(*(
                getattr(model, column).ilike(pattern, escape="\\")
                for column in spec.search_columns
            )))
        for name, value in (query.get("filters") or {}).items():
            flt = spec.filters.get(name)
            if flt is None:
                raise InvalidInputError(f"Unknown filter for {spec.kind.value}: {name}")
            column = getattr(model, flt.column)
            if flt.op == "eq":
                conditions.append(column == value)
            elif flt.op == "gte":
                conditions.append(column >= value)
            elif flt.op == "lte":
                conditions.append(column <= value)
            elif flt.op == "json_contains":
                conditions.append(column.like(f"%{_escape_like(json.dumps(value))}%", escape="\\"))
            else:
                raise ValueError(f"Unsupported filter op {flt.op}")
        return conditions

    def get(self, kind: "str | EntityKind", query: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Return decrypted DTOs for every entity of this kind matching all supplied criteria."""
        spec = spec_for(kind)
        self._ensure_open()
        stmt = select(spec.model)
        conditions = self._conditions(spec, query or {})
        if conditions:
            stmt = stmt.where(and_(*conditions))

        with self._lock, self._session_factory() as db:
            self._ensure_open()
            try:
                rows = db.scalars(stmt).all()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to query {spec.kind.value}") from e
            return [self._row_to_dto(spec, row) for row in rows]

    def get_by_id(self, kind: "str | EntityKind", entity_id: str) -> dict[str, Any]:
        """Single entity by id. Raises NotFoundError if absent."""
        spec = spec_for(kind)
        found = self.get(spec.kind, {"id": entity_id})
        if not found:
            raise NotFoundError(f"{spec.kind.value} {entity_id} not found")
        return found[0]
