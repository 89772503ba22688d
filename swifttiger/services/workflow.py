"""
Job status workflow.
Allowed transitions plus role and assignment rules.
"""
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..models.models import JOB_STATUSES, Job, User


ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "Pending": ("In Progress", "Cancelled"),
    "In Progress": ("Completed", "Cancelled", "Pending"),
    "Completed": ("In Progress",),
    "Cancelled": ("Pending",),
}

REQUIRES_ASSIGNMENT = ("In Progress", "Completed")
TECHNICIAN_STATUSES = ("In Progress", "Completed")

# marks "assignee not part of this update"; None means the update unassigns
UNCHANGED = object()


class WorkflowError(Exception):
    """A status change that is not allowed. status_code is 400 for invalid transitions and 403 for role rules."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def check_transition(job: Job, new_status: str, user: User, assigned_to=UNCHANGED) -> None:
    """
    Raise WorkflowError unless `user` may move `job` to `new_status`.

    assigned_to overrides job.assigned_to when the same update also changes the assignee,
    including None for an update that unassigns the job.
    """
    if new_status not in JOB_STATUSES:
        raise WorkflowError(f"Invalid status: {new_status}")
    current = job.status or "Pending"
    if new_status == current:
        return

    role = (user.role or "").lower()
    assignee = job.assigned_to if assigned_to is UNCHANGED else assigned_to

    if role == "technician":
        if job.assigned_to != user.id:
            raise WorkflowError("Technicians can only update jobs assigned to them", 403)
        if new_status == "Cancelled":
            raise WorkflowError("Only managers and administrators can cancel jobs", 403)
        if new_status not in TECHNICIAN_STATUSES:
            raise WorkflowError(f"Technicians cannot set status {new_status}", 403)

    if current == "Completed" and new_status == "Cancelled":
        raise WorkflowError("Completed jobs cannot be cancelled")
    if current == "Pending" and new_status == "Completed":
        raise WorkflowError("Job must be started before it can be completed")
    if new_status not in ALLOWED_TRANSITIONS.get(current, ()):
        raise WorkflowError(f"Invalid status transition from {current} to {new_status}")
    if new_status in REQUIRES_ASSIGNMENT and not assignee:
        raise WorkflowError(f"Job must be assigned to a technician before it can be set to {new_status}")


def apply_status(job: Job, new_status: str, user: User, now: Optional[datetime] = None) -> None:
    """Set the status and the completion bookkeeping that goes with it."""
    now = now or datetime.utcnow()
    job.status = new_status
    if new_status == "Completed":
        job.completed_date = now
    elif job.completed_date is not None and new_status != "Completed":
        job.completed_date = None
    job.updated_by = user.id
    job.updated_at = now
