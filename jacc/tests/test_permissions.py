"""Tests for the document permission model.

Tests:
- normalize() mutual exclusion of view_all / admin_only
- partial updates keep persisted flags
- can_read() per role and for AI context
- readable_by() SQL filter agrees with can_read()
"""

import itertools

import pytest
from sqlalchemy import select

from knowledge.models import Document, Role
from knowledge.services.permissions import (
    DEFAULT_PERMISSIONS,
    PartialPermissionSet,
    PermissionSet,
    can_read,
    normalize,
    readable_by,
)

# ── normalize ────────────────────────────────────────────────────


def test_defaults_for_new_document():
    perms = normalize(PartialPermissionSet())
    assert perms == DEFAULT_PERMISSIONS
    assert perms.view_all and not perms.admin_only
    assert perms.training_data and perms.auto_vectorize


def test_admin_only_clears_view_all():
    perms = normalize(PartialPermissionSet(admin_only=True))
    assert perms.admin_only is True
    assert perms.view_all is False
    assert perms.manager_access is False
    assert perms.agent_access is False


def test_view_all_clears_admin_only():
    current = normalize(PartialPermissionSet(admin_only=True))
    perms = normalize(PartialPermissionSet(view_all=True), current)
    assert perms.view_all is True
    assert perms.admin_only is False
    assert perms.manager_access is True
    assert perms.agent_access is True


def test_admin_only_wins_when_both_set():
    perms = normalize(PartialPermissionSet(view_all=True, admin_only=True))
    assert perms.admin_only is True
    assert perms.view_all is False


def test_partial_update_keeps_other_flags():
    current = PermissionSet(view_all=False, agent_access=False, training_data=False)
    perms = normalize(PartialPermissionSet(auto_vectorize=False), current)
    assert perms.view_all is False
    assert perms.agent_access is False
    assert perms.training_data is False
    assert perms.auto_vectorize is False


def test_clearing_admin_only_does_not_reopen():
    current = normalize(PartialPermissionSet(admin_only=True))
    perms = normalize(PartialPermissionSet(admin_only=False), current)
    assert perms.admin_only is False
    assert perms.view_all is False
    assert perms.agent_access is False


@pytest.mark.parametrize(
    "view_all,admin_only",
    list(itertools.product([None, True, False], repeat=2)),
)
def test_never_both_view_all_and_admin_only(view_all, admin_only):
    for current in (DEFAULT_PERMISSIONS, normalize(PartialPermissionSet(admin_only=True))):
        perms = normalize(PartialPermissionSet(view_all=view_all, admin_only=admin_only), current)
        assert not (perms.view_all and perms.admin_only)


def test_from_dict_ignores_unknown_keys():
    update = PartialPermissionSet.from_dict({"admin_only": True, "sensitivity": "high"})
    assert update.admin_only is True
    assert PartialPermissionSet.from_dict(None) == PartialPermissionSet()


# ── can_read ─────────────────────────────────────────────────────


def test_admin_reads_everything():
    perms = normalize(PartialPermissionSet(admin_only=True))
    assert can_read(Role.ADMIN, perms)


def test_admin_only_hidden_from_other_roles():
    perms = normalize(PartialPermissionSet(admin_only=True))
    assert not can_read(Role.MANAGER, perms)
    assert not can_read(Role.AGENT, perms)


def test_role_flags_apply_without_view_all():
    perms = PermissionSet(view_all=False, manager_access=True, agent_access=False)
    assert can_read(Role.MANAGER, perms)
    assert not can_read(Role.AGENT, perms)


def test_training_data_off_excluded_from_ai_context():
    perms = PermissionSet(training_data=False)
    assert can_read(Role.AGENT, perms)
    assert not can_read(Role.AGENT, perms, for_ai_context=True)
    assert not can_read(Role.ADMIN, perms, for_ai_context=True)


# ── readable_by ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sql_filter_matches_predicate(session, make_document):
    variants = {
        "open.txt": {},
        "admin.txt": {"admin_only": True},
        "managers.txt": {"view_all": False, "agent_access": False},
        "agents.txt": {"view_all": False, "manager_access": False},
        "private-training.txt": {"training_data": False},
    }
    documents = {}
    for name, flags in variants.items():
        documents[name] = await make_document(session, name, permissions=flags)

    for role, for_ai in itertools.product(Role, [False, True]):
        result = await session.execute(
            select(Document.original_name).where(readable_by(role, for_ai))
        )
        visible = set(result.scalars().all())
        expected = {
            name
            for name, doc in documents.items()
            if can_read(role, PermissionSet.from_document(doc), for_ai)
        }
        assert visible == expected, (role, for_ai)
