import uuid

import pytest

from swifttiger.errors import classify_status
from swifttiger.models.models import Job, User
from swifttiger.services.workflow import WorkflowError, apply_status, check_transition


def _user(role):
    return User(id=uuid.uuid4(), name=role, email=f"{role}@example.com", password_hash="x", role=role)


def _job(status="Pending", assigned_to=None):
    return Job(id=uuid.uuid4(), name="j", description="d", status=status, assigned_to=assigned_to)


@pytest.mark.parametrize("current,new", [
    ("Pending", "In Progress"),
    ("In Progress", "Completed"),
    ("In Progress", "Pending"),
    ("Completed", "In Progress"),
    ("Cancelled", "Pending"),
    ("Pending", "Cancelled"),
])
def test_allowed_transitions(current, new):
    tech = _user("technician")
    check_transition(_job(current, assigned_to=tech.id), new, _user("manager"))


@pytest.mark.parametrize("current,new", [
    ("Pending", "Completed"),
    ("Completed", "Cancelled"),
    ("Cancelled", "In Progress"),
    ("Completed", "Pending"),
])
def test_rejected_transitions(current, new):
    tech = _user("technician")
    with pytest.raises(WorkflowError) as exc:
        check_transition(_job(current, assigned_to=tech.id), new, _user("admin"))
    assert exc.value.status_code == 400


def test_start_requires_assignee():
    with pytest.raises(WorkflowError):
        check_transition(_job("Pending"), "In Progress", _user("dispatcher"))
    tech = _user("technician")
    check_transition(_job("Pending"), "In Progress", _user("dispatcher"), assigned_to=tech.id)


def test_unassigning_in_same_update_blocks_start():
    tech = _user("technician")
    with pytest.raises(WorkflowError):
        check_transition(_job("Pending", assigned_to=tech.id), "In Progress", _user("admin"), assigned_to=None)


def test_technician_rules():
    tech = _user("technician")
    other = _user("technician")
    with pytest.raises(WorkflowError) as exc:
        check_transition(_job("Pending", assigned_to=other.id), "In Progress", tech)
    assert exc.value.status_code == 403
    with pytest.raises(WorkflowError) as exc:
        check_transition(_job("In Progress", assigned_to=tech.id), "Pending", tech)
    assert exc.value.status_code == 403
    check_transition(_job("Pending", assigned_to=tech.id), "In Progress", tech)


def test_unknown_status():
    with pytest.raises(WorkflowError):
        check_transition(_job(), "Paused", _user("admin"))


def test_apply_status_tracks_completion():
    admin = _user("admin")
    job = _job("In Progress")
    apply_status(job, "Completed", admin)
    assert job.completed_date is not None
    assert job.updated_by == admin.id
    apply_status(job, "In Progress", admin)
    assert job.completed_date is None


@pytest.mark.parametrize("status,kind", [
    (400, "validation"), (422, "validation"), (401, "auth"), (403, "permission"),
    (404, "not_found"), (409, "conflict"), (429, "rate_limit"), (500, "server"), (503, "server"), (418, "unknown"),
])
def test_classify_status(status, kind):
    assert classify_status(status) == kind
