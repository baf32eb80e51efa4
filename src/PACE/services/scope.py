# src/PACE/services/scope.py
"""
Scope resolution: the single place where a principal's role is turned into
the set of groups it may read or write.

Everything here is pure. Callers pass in what they know (the principal, the
requested filters, the group that owns a target record) and receive either an
``EffectiveFilter`` or a ``Forbidden`` error. No store access happens here.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

import sqlalchemy as sa

from PACE.errors import Forbidden


class Role(str, enum.Enum):
    SUPERADMIN = "superadmin"
    LEADPASTOR = "leadpastor"
    ADMIN = "admin"
    LEADER = "leader"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise Forbidden(f"Unknown role {value!r}") from None


UNRESTRICTED_ROLES = frozenset({Role.SUPERADMIN, Role.LEADPASTOR})
ATTENDANCE_ADMIN_ROLES = frozenset({Role.SUPERADMIN, Role.ADMIN})


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    # operations touching many people at once (bulk delete)
    BULK = "bulk"
    # milestone-definition and group administration
    CATALOG = "catalog"
    # reconciliation jobs
    RECONCILE = "reconcile"
    # deleting attendance history (admins and superadmins only)
    ATTENDANCE_DELETE = "attendance_delete"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, supplied as-is by the authentication collaborator."""
    id: Optional[uuid.UUID]
    role: Role
    group_id: Optional[uuid.UUID] = None
    group_name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: dict) -> "Principal":
        def _uuid(v):
            return uuid.UUID(str(v)) if v else None

        return cls(
            id=_uuid(claims.get("id") or claims.get("sub")),
            role=Role.parse(claims.get("role", "")),
            group_id=_uuid(claims.get("group_id")),
            group_name=claims.get("group_name"),
        )

    @classmethod
    def system(cls) -> "Principal":
        """Full-scope principal used by administrative jobs and the CLI."""
        return cls(id=None, role=Role.SUPERADMIN)

    @property
    def unrestricted(self) -> bool:
        return self.role in UNRESTRICTED_ROLES


@dataclass(frozen=True)
class ScopeRequest:
    group_id: Optional[uuid.UUID] = None
    year: Optional[int] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class EffectiveFilter:
    """
    What a principal is allowed to see.

    ``group_ids`` is ``None`` for unrestricted access; an empty frozenset
    means nothing is visible.
    """
    group_ids: Optional[frozenset[uuid.UUID]] = None
    year: Optional[int] = None
    search: Optional[str] = None

    @classmethod
    def nothing(cls) -> "EffectiveFilter":
        return cls(group_ids=frozenset())

    @property
    def is_empty(self) -> bool:
        return self.group_ids is not None and not self.group_ids

    @property
    def unrestricted(self) -> bool:
        return self.group_ids is None

    def allows_group(self, group_id: Optional[uuid.UUID]) -> bool:
        if self.group_ids is None:
            return True
        return group_id is not None and group_id in self.group_ids

    def where(
        self,
        group_col,
        *,
        year_col=None,
        search_cols: Iterable = (),
    ) -> sa.ColumnElement[bool]:
        """Render as a SQL predicate over the caller's columns."""
        clauses: list = []
        if self.group_ids is not None:
            if not self.group_ids:
                return sa.false()
            clauses.append(group_col.in_(sorted(self.group_ids, key=str)))
        if self.year is not None and year_col is not None:
            clauses.append(year_col == self.year)
        if self.search:
            needle = f"%{self.search.strip().lower()}%"
            cols = list(search_cols)
            if cols:
                clauses.append(sa.or_(*[sa.func.lower(c).like(needle) for c in cols]))
        return sa.and_(sa.true(), *clauses)


def resolve(
    principal: Principal,
    requested: ScopeRequest | None = None,
    action: Action = Action.READ,
) -> EffectiveFilter:
    """
    Turn (principal, requested filters) into the filter that will actually be applied.

    Raises ``Forbidden`` when the principal may not perform ``action`` at all,
    or asks for a group outside its scope.
    """
    requested = requested or ScopeRequest()
    role = principal.role

    if action is Action.RECONCILE and role is not Role.SUPERADMIN:
        raise Forbidden("Only a superadmin may run reconciliation jobs")
    if action is Action.CATALOG and role is not Role.SUPERADMIN:
        raise Forbidden("Only a superadmin may change milestones or groups")
    if action is Action.ATTENDANCE_DELETE and role not in ATTENDANCE_ADMIN_ROLES:
        raise Forbidden("Only an admin may delete attendance records")

    if role in UNRESTRICTED_ROLES:
        return EffectiveFilter(
            group_ids=None if requested.group_id is None else frozenset({requested.group_id}),
            year=requested.year,
            search=requested.search,
        )

    if action is Action.BULK and role is Role.LEADER:
        raise Forbidden("Leaders may not perform bulk operations")

    if principal.group_id is None:
        if action is Action.READ:
            return EffectiveFilter.nothing()
        raise Forbidden("No group is assigned to your account")

    if requested.group_id is not None and requested.group_id != principal.group_id:
        raise Forbidden("You can only access your assigned group")

    return EffectiveFilter(
        group_ids=frozenset({principal.group_id}),
        year=requested.year,
        search=requested.search,
    )


def authorize_target(
    principal: Principal,
    target_group_id: Optional[uuid.UUID],
    action: Action = Action.WRITE,
) -> EffectiveFilter:
    """
    Check that a single record owned by ``target_group_id`` is in scope.

    The error message never reveals whether the target exists in another group.
    """
    eff = resolve(principal, ScopeRequest(), action)
    if not eff.allows_group(target_group_id):
        if action is Action.READ:
            raise Forbidden("You can only view people in your group")
        raise Forbidden("You can only modify people in your group")
    return eff


__all__ = [
    "Role",
    "Action",
    "Principal",
    "ScopeRequest",
    "EffectiveFilter",
    "resolve",
    "authorize_target",
    "UNRESTRICTED_ROLES",
    "ATTENDANCE_ADMIN_ROLES",
]
