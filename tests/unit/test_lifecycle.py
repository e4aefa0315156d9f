import pytest

from waypoint.domain.errors import InvalidTransition, TerminalState
from waypoint.features.marketplace.domain import (
    APPLICATION_LIFECYCLE,
    TRANSACTION_LIFECYCLE,
    ApplicationStatus,
    TransactionStatus,
)
from waypoint.features.waitlist.domain import WAITLIST_LIFECYCLE, WaitlistStatus


def test_waitlist_moves_forward_one_step_at_a_time():
    assert WAITLIST_LIFECYCLE.can(WaitlistStatus.PENDING, WaitlistStatus.APPROVED)
    assert not WAITLIST_LIFECYCLE.can(WaitlistStatus.PENDING, WaitlistStatus.INVITED)
    assert not WAITLIST_LIFECYCLE.can(WaitlistStatus.JOINED, WaitlistStatus.PENDING)


def test_waitlist_sources_for_invited():
    assert WAITLIST_LIFECYCLE.sources_for(WaitlistStatus.INVITED) == [WaitlistStatus.APPROVED]


def test_application_terminal_states_raise_terminal_state():
    with pytest.raises(TerminalState) as exc_info:
        APPLICATION_LIFECYCLE.ensure(ApplicationStatus.REJECTED, ApplicationStatus.APPROVED)

    assert exc_info.value.http_status == 409
    assert isinstance(exc_info.value, InvalidTransition)


def test_needs_info_is_reentrant_and_can_be_resubmitted():
    status = ApplicationStatus.ADDITIONAL_INFO_REQUIRED
    APPLICATION_LIFECYCLE.ensure(status, ApplicationStatus.ADDITIONAL_INFO_REQUIRED)
    APPLICATION_LIFECYCLE.ensure(status, ApplicationStatus.SUBMITTED)


def test_submitted_cannot_be_resubmitted():
    with pytest.raises(InvalidTransition) as exc_info:
        APPLICATION_LIFECYCLE.ensure(ApplicationStatus.SUBMITTED, ApplicationStatus.SUBMITTED)

    assert not isinstance(exc_info.value, TerminalState)


def test_transactions_settle_once():
    assert TRANSACTION_LIFECYCLE.can(TransactionStatus.PENDING, TransactionStatus.SUCCEEDED)
    with pytest.raises(TerminalState):
        TRANSACTION_LIFECYCLE.ensure(TransactionStatus.SUCCEEDED, TransactionStatus.FAILED)
