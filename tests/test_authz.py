from types import SimpleNamespace

import pytest

from app.core.errors import Forbidden
from app.services import authz

from conftest import build_user


def _loan(branch="Didube", assigned_to_id=None):
    return SimpleNamespace(branch=branch, assigned_to_id=assigned_to_id)


def test_officer_can_claim_in_own_branch_only():
    officer = build_user(role="officer", branches="Didube")
    assert authz.can_claim(officer, _loan("Didube"))
    assert not authz.can_claim(officer, _loan("Batumi"))


def test_officer_without_branches_cannot_claim():
    officer = build_user(role="officer", branches="")
    assert not authz.can_claim(officer, _loan("Didube"))


def test_manager_viewer_is_read_only():
    viewer = build_user(role="manager_viewer", branches="All")
    assert not authz.can_claim(viewer, _loan())
    assert not authz.can_refresh_verification(viewer)
    assert not authz.can_close(viewer, _loan(assigned_to_id=viewer.id))
    assert not authz.can_arbitrate(viewer)


@pytest.mark.parametrize(
    "role, assign, reassign, settings, users",
    [
        ("officer", False, False, False, False),
        ("manager", True, False, False, False),
        ("manager_viewer", False, False, False, False),
        ("admin_editor", True, True, True, False),
        ("admin", True, True, True, True),
    ],
)
def test_role_matrix(role, assign, reassign, settings, users):
    actor = build_user(role=role, branches="All")
    assert authz.can_assign(actor) is assign
    assert authz.can_reassign(actor) is reassign
    assert authz.can_manage_settings(actor) is settings
    assert authz.can_manage_users(actor) is users


def test_only_officers_request_assignment():
    assert authz.can_request(build_user(role="officer"))
    assert not authz.can_request(build_user(role="manager"))


def test_officer_closes_only_own_loan():
    officer = build_user(role="officer", branches="Didube")
    assert authz.can_close(officer, _loan(assigned_to_id=officer.id))
    assert not authz.can_close(officer, _loan(assigned_to_id=officer.id + 1))
    assert not authz.can_close(officer, _loan(assigned_to_id=None))
    assert authz.can_close(build_user(role="manager"), _loan(assigned_to_id=None))


def test_ensure_raises_forbidden_with_details():
    with pytest.raises(Forbidden) as excinfo:
        authz.ensure(False, "claim", reason="branch_mismatch")
    assert excinfo.value.status_code == 403
    assert excinfo.value.details == {"operation": "claim", "reason": "branch_mismatch"}
    authz.ensure(True, "claim")
