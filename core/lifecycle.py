"""
Job Lifecycle — the notification job state machine.

    PENDING  → QUEUED      enqueued to the external queue at creation
    QUEUED   → PENDING     enqueue failed; database polling takes over
    PENDING  → SENDING     claimed by the database poller or queue consumer
    QUEUED   → SENDING     claimed by the queue consumer (or stale fallback)
    PENDING  → CANCELLED   explicit cancel, only while PENDING
    SENDING  → COMPLETED   delivery succeeded
    SENDING  → FAILED      delivery failed, or the job could not be handed off

COMPLETED, FAILED and CANCELLED are terminal. Stores apply every transition
as a conditional single-row update, so the "from" side of a transition is
always re-checked at write time.
"""
from __future__ import annotations

from typing import Iterable

from core.errors import InvalidTransitionError
from models.schemas import JobStatus, TERMINAL_STATUSES

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.QUEUED, JobStatus.SENDING, JobStatus.CANCELLED}),
    JobStatus.QUEUED: frozenset({JobStatus.PENDING, JobStatus.SENDING}),
    JobStatus.SENDING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Statuses a discovery loop may claim from.
CLAIMABLE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.QUEUED})


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_statuses: Iterable[JobStatus], to_status: JobStatus) -> frozenset[JobStatus]:
    """
    Check every (from → to) pair and return the from-set as a frozenset.
    Raises InvalidTransitionError on the first disallowed pair.
    """
    sources = frozenset(JobStatus(s) for s in from_statuses)
    for source in sources:
        if not can_transition(source, to_status):
            raise InvalidTransitionError(source.value, JobStatus(to_status).value)
    return sources


def is_terminal(status: JobStatus) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES
