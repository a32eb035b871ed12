# auth/guard.py
"""
Session-level enforcement of the ownership model.

`install_guard(SessionLocal)` wires three listeners onto the session factory so
that no service can forget an ownership check:

* do_orm_execute  - ORM SELECTs on guarded entities get `owner OR public`
                    (or `public` for anonymous sessions) injected via
                    with_loader_criteria. ORM bulk UPDATE/DELETE is narrowed
                    to the caller's own rows and may not touch ownership or
                    invariant columns; ORM bulk INSERT is refused, new rows
                    go through the unit of work.
* before_flush    - inserts, updates (old and new owner) and deletes are checked
                    against the owner predicate, plus row invariants.
* after_begin     - on PostgreSQL, publishes the principal to
                    `app.current_user_id` for the row level security policies.

The principal lives in `session.info["principal"]`; sessions without one are
anonymous.
"""
import logging
import re

from sqlalchemy import event, inspect, text
from sqlalchemy.orm import with_loader_criteria

from auth.policies import (
    ANONYMOUS,
    EntityKind,
    KIND_BY_MODEL,
    MODEL_BY_KIND,
    Principal,
    kind_of,
    owner_predicate,
    read_predicate,
    resolve_root_owner,
)
from utils.errors import AuthorizationError, InvariantViolation

logger = logging.getLogger(__name__)

GUARDED_MAPPERS = {inspect(model) for model in MODEL_BY_KIND.values()}

# attributes whose change moves a row to a different owner
OWNERSHIP_KEYS = {
    EntityKind.PROFILE: ("id",),
    EntityKind.VEHICLE: ("profile_id",),
    EntityKind.MOD: ("vehicle_id",),
    EntityKind.IMAGE: ("profile_id", "vehicle_id", "mod_id"),
}

# columns a bulk UPDATE may not set: ownership plus anything `check_invariants` reads
BULK_PROTECTED = {
    EntityKind.PROFILE: {"id", "username"},
    EntityKind.VEHICLE: {"id", "profile_id"},
    EntityKind.MOD: {"id", "vehicle_id", "cost_cents"},
    EntityKind.IMAGE: {"id", "profile_id", "vehicle_id", "mod_id", "storage_path"},
}

_TRAVERSAL = re.compile(r"(^|/)\.\.(/|$)")


def principal_of(session) -> Principal:
    return session.info.get("principal") or ANONYMOUS


# ───────────── invariants ──────────────────────────────────────────────────────
def valid_storage_path(path) -> bool:
    if not isinstance(path, str) or not path.strip():
        return False
    return not _TRAVERSAL.search(path) and "//" not in path


def check_invariants(kind: EntityKind, obj) -> None:
    if kind is EntityKind.IMAGE:
        if (obj.vehicle_id is None) == (obj.mod_id is None):
            raise InvariantViolation("Image must belong to exactly one vehicle or mod")
        if not valid_storage_path(obj.storage_path):
            raise InvariantViolation("Invalid storage path")
    elif kind is EntityKind.MOD:
        if obj.cost_cents is not None and obj.cost_cents < 0:
            raise InvariantViolation("Cost must be non-negative")
    elif kind is EntityKind.PROFILE:
        username = obj.username
        if username is not None and (not username.strip() or username != username.lower()):
            raise InvariantViolation("Username must be lowercase and non-blank")


# ───────────── ownership ───────────────────────────────────────────────────────
def _owned_by(session, kind: EntityKind, values, user_id) -> bool:
    """`values` exposes the row's ownership attributes (an instance or a snapshot)."""
    if user_id is None:
        return False
    if kind is EntityKind.IMAGE and values.profile_id != user_id:
        return False
    return resolve_root_owner(session, kind, values) == user_id


class _Snapshot:
    """Committed values of an object's ownership attributes."""
    def __init__(self, obj, keys):
        state = inspect(obj)
        for key in keys:
            hist = state.attrs[key].history
            setattr(self, key, hist.deleted[0] if hist.deleted else getattr(obj, key))


def _check_write(session, obj, user_id, *, is_new=False, is_deleted=False) -> None:
    kind = kind_of(obj)
    if kind is None:
        return
    keys = OWNERSHIP_KEYS[kind]

    if not is_new:
        before = _Snapshot(obj, keys)
        if not _owned_by(session, kind, before, user_id):
            raise AuthorizationError(f"{kind.value} not found")
    if is_deleted:
        return

    check_invariants(kind, obj)
    if not _owned_by(session, kind, obj, user_id):
        raise AuthorizationError(f"{kind.value} not found")


# ───────────── listeners ───────────────────────────────────────────────────────
def _set_keys(execute_state) -> set:
    """Column keys an ORM UPDATE would SET, from `.values()` or a parameter dict."""
    stmt = execute_state.statement
    values = dict(stmt._values or {})
    values.update(stmt._ordered_values or ())
    if isinstance(execute_state.parameters, dict):
        values.update(execute_state.parameters)
    return {getattr(key, "key", key) for key in values}


def _scope_bulk_write(execute_state, kind: EntityKind) -> None:
    if isinstance(execute_state.parameters, (list, tuple)):
        raise AuthorizationError("Bulk writes by primary key are not allowed on owned tables")
    if execute_state.is_update:
        protected = _set_keys(execute_state) & BULK_PROTECTED[kind]
        if protected:
            raise AuthorizationError(f"Bulk updates may not set {', '.join(sorted(protected))}")
    user_id = principal_of(execute_state.session).user_id
    execute_state.statement = execute_state.statement.where(owner_predicate(kind, user_id))


def _guard_execute(execute_state) -> None:
    mapper = execute_state.bind_mapper
    if mapper is None:
        return  # Core statement

    if mapper in GUARDED_MAPPERS:
        if execute_state.is_insert:
            raise AuthorizationError("Rows of owned tables are created through the session")
        if execute_state.is_update or execute_state.is_delete:
            _scope_bulk_write(execute_state, KIND_BY_MODEL[mapper.class_])
            return

    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
    ):
        principal = principal_of(execute_state.session)
        execute_state.statement = execute_state.statement.options(
            *(
                with_loader_criteria(model, read_predicate(kind, principal), include_aliases=True)
                for kind, model in MODEL_BY_KIND.items()
            )
        )


def _guard_flush(session, flush_context, instances) -> None:
    user_id = principal_of(session).user_id
    with session.no_autoflush:
        for obj in list(session.new):
            _check_write(session, obj, user_id, is_new=True)
        for obj in list(session.dirty):
            if session.is_modified(obj, include_collections=False):
                _check_write(session, obj, user_id)
        for obj in list(session.deleted):
            _check_write(session, obj, user_id, is_deleted=True)


def _publish_principal(session, transaction, connection) -> None:
    if connection.dialect.name != "postgresql":
        return
    user_id = principal_of(session).user_id
    connection.execute(
        text("select set_config('app.current_user_id', :uid, true)"),
        {"uid": str(user_id) if user_id else ""},
    )


def install_guard(session_factory) -> None:
    event.listen(session_factory, "do_orm_execute", _guard_execute)
    event.listen(session_factory, "before_flush", _guard_flush)
    event.listen(session_factory, "after_begin", _publish_principal)
    logger.debug("Ownership guard installed on %r", session_factory)

