"""Document permission model.

Two concerns live here:

* ``normalize`` resolves a partial permission update against the persisted
  set, enforcing the mutual exclusion of ``view_all`` and ``admin_only``.
  It is the only place that rule is applied; ingestion and the bulk edit
  endpoint both go through it.
* ``can_read`` / ``readable_by`` decide what a role may see. The Python
  predicate and the SQL expression encode the same rule so the corpus
  index can filter inside its query.
"""

from dataclasses import asdict, dataclass, fields

from sqlalchemy import and_, false, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

from knowledge.models import Document, Role


@dataclass(frozen=True)
class PermissionSet:
    view_all: bool = True
    admin_only: bool = False
    manager_access: bool = True
    agent_access: bool = True
    training_data: bool = True
    auto_vectorize: bool = True

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_document(cls, document: Document) -> "PermissionSet":
        return cls(**{f.name: getattr(document, f.name) for f in fields(cls)})


@dataclass(frozen=True)
class PartialPermissionSet:
    """A permission update; ``None`` means the flag is not being changed."""

    view_all: bool | None = None
    admin_only: bool | None = None
    manager_access: bool | None = None
    agent_access: bool | None = None
    training_data: bool | None = None
    auto_vectorize: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, bool | None] | None) -> "PartialPermissionSet":
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


DEFAULT_PERMISSIONS = PermissionSet()


def normalize(
    update: PartialPermissionSet,
    current: PermissionSet | None = None,
) -> PermissionSet:
    """
    Resolve a permission update into a consistent, fully-populated set.

    Absent flags keep their current value (or the defaults for a new
    document). Setting ``view_all`` opens the document to every role;
    setting ``admin_only`` closes it to everyone but admins. If an update
    sets both, ``admin_only`` wins.
    """
    base = current or DEFAULT_PERMISSIONS
    merged = {
        name: value if value is not None else getattr(base, name)
        for name, value in asdict(update).items()
    }

    if update.admin_only is True:
        merged.update(view_all=False, manager_access=False, agent_access=False)
    elif update.view_all is True:
        merged.update(admin_only=False, manager_access=True, agent_access=True)

    return PermissionSet(**merged)


def apply_permissions(document: Document, permissions: PermissionSet) -> None:
    """Write a normalized permission set onto a document row."""
    for name, value in permissions.as_dict().items():
        setattr(document, name, value)


def can_read(role: Role, permissions: PermissionSet, for_ai_context: bool = False) -> bool:
    if for_ai_context and not permissions.training_data:
        return False
    if role == Role.ADMIN:
        return True
    if permissions.admin_only:
        return False
    if role == Role.MANAGER:
        return permissions.view_all or permissions.manager_access
    return permissions.view_all or permissions.agent_access


def readable_by(role: Role, for_ai_context: bool = False) -> ColumnElement[bool]:
    """SQL filter over ``Document`` equivalent to ``can_read``."""
    if role == Role.ADMIN:
        clause = true()
    elif role == Role.MANAGER:
        clause = and_(
            not_(Document.admin_only),
            or_(Document.view_all, Document.manager_access),
        )
    elif role == Role.AGENT:
        clause = and_(
            not_(Document.admin_only),
            or_(Document.view_all, Document.agent_access),
        )
    else:
        clause = false()

    if for_ai_context:
        clause = and_(clause, Document.training_data == True)  # noqa: E712
    return clause
