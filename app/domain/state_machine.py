from __future__ import annotations

from enum import StrEnum


class WorkItemStatus(StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"


WORK_ITEM_ALLOWED_TRANSITIONS: dict[WorkItemStatus, set[WorkItemStatus]] = {
    WorkItemStatus.PENDING: {WorkItemStatus.UNDER_REVIEW, WorkItemStatus.COMPLETED},
    WorkItemStatus.UNDER_REVIEW: {WorkItemStatus.PENDING, WorkItemStatus.COMPLETED},
    WorkItemStatus.COMPLETED: set(),
}


def can_work_item_transition(source: WorkItemStatus, target: WorkItemStatus) -> bool:
    return target in WORK_ITEM_ALLOWED_TRANSITIONS.get(source, set())


class TicketStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"


TICKET_ALLOWED_TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
    TicketStatus.PENDING: {TicketStatus.APPROVED},
    TicketStatus.APPROVED: set(),
}


def can_ticket_transition(source: TicketStatus, target: TicketStatus) -> bool:
    return target in TICKET_ALLOWED_TRANSITIONS.get(source, set())


class ReviewState(StrEnum):
    SUBMITTED = "SUBMITTED"
    TIER1_APPROVED = "TIER1_APPROVED"
    TIER1_REJECTED = "TIER1_REJECTED"
    RESCHEDULE_REQUESTED = "RESCHEDULE_REQUESTED"
    COMPLETED = "COMPLETED"
    CLOSED_BY_ADMIN = "CLOSED_BY_ADMIN"


REVIEW_ALLOWED_TRANSITIONS: dict[ReviewState, set[ReviewState]] = {
    ReviewState.SUBMITTED: {
        ReviewState.TIER1_APPROVED,
        ReviewState.TIER1_REJECTED,
        ReviewState.RESCHEDULE_REQUESTED,
    },
    ReviewState.TIER1_APPROVED: {ReviewState.COMPLETED},
    ReviewState.TIER1_REJECTED: set(),
    ReviewState.RESCHEDULE_REQUESTED: {
        ReviewState.SUBMITTED,
        ReviewState.CLOSED_BY_ADMIN,
    },
    ReviewState.COMPLETED: set(),
    ReviewState.CLOSED_BY_ADMIN: set(),
}


def can_review_transition(source: ReviewState, target: ReviewState) -> bool:
    return target in REVIEW_ALLOWED_TRANSITIONS.get(source, set())
