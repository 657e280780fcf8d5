"""Tests for the assignment resolver."""
from types import SimpleNamespace

import pytest

from app.opsdesk import assignment
from app.opsdesk.assignment import Action, can_act_on
from app.opsdesk.errors import PermissionDenied
from app.opsdesk.permissions import Actor, Role

ADMIN = Actor(user_id=1, role=Role.ADMIN)
X = Actor(user_id=2, role=Role.ASSISTANT)
Y = Actor(user_id=3, role=Role.ASSISTANT)


def _record(owner=None):
    return SimpleNamespace(id=10, assigned_to_user_id=owner)


def test_admin_may_view_edit_delete_anything():
    for owner in (None, X.user_id, Y.user_id):
        for action in (Action.VIEW, Action.EDIT, Action.DELETE):
            assert can_act_on(ADMIN, _record(owner), action)


def test_assistant_only_own_records():
    mine = _record(X.user_id)
    assert can_act_on(X, mine, "view")
    assert can_act_on(X, mine, "edit")
    assert not can_act_on(Y, mine, "view")
    assert not can_act_on(Y, mine, "edit")
    assert not can_act_on(X, _record(None), "edit")


def test_assistant_never_deletes():
    assert not can_act_on(X, _record(X.user_id), Action.DELETE)
    with pytest.raises(PermissionDenied, match="admin"):
        assignment.require(X, _record(X.user_id), Action.DELETE)


def test_unknown_action_is_denied():
    assert not can_act_on(ADMIN, _record(), "archive")
    with pytest.raises(PermissionDenied):
        assignment.require(ADMIN, _record(), "archive")


def test_claim_unassigned_then_idempotent():
    rec = _record(None)
    assert assignment.claim(Y, rec) is True
    assert rec.assigned_to_user_id == Y.user_id
    assert assignment.claim(Y, rec) is False
    assert rec.assigned_to_user_id == Y.user_id


def test_claim_taken_record_fails_and_leaves_owner():
    rec = _record(X.user_id)
    with pytest.raises(PermissionDenied):
        assignment.claim(Y, rec)
    assert rec.assigned_to_user_id == X.user_id
    assert not can_act_on(ADMIN, rec, Action.CLAIM)


def test_reassign_admin_only():
    rec = _record(Y.user_id)
    with pytest.raises(PermissionDenied):
        assignment.reassign(Y, rec, X.user_id)
    assert rec.assigned_to_user_id == Y.user_id

    assert assignment.reassign(ADMIN, rec, X.user_id) is True
    assert rec.assigned_to_user_id == X.user_id
    assert assignment.reassign(ADMIN, rec, X.user_id) is False
    assert assignment.reassign(ADMIN, rec, None) is True
    assert rec.assigned_to_user_id is None


def test_assignee_must_be_a_user_id():
    with pytest.raises(TypeError):
        assignment.assignee_of(SimpleNamespace(id=1, assigned_to_user_id="2"))
