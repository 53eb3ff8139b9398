import pytest

from booking_engine.errors import InsufficientHoursError
from booking_engine.models import LedgerReason
from booking_engine.scheduler.ledger import HourLedger

from factories import purchase


def test_balance_is_sum_of_deltas() -> None:
    ledger = HourLedger([purchase("s-1", 10.0)])
    ledger.debit("s-1", 1.0, LedgerReason.ATTENDED, "b-1")
    ledger.debit("s-1", 1.5, LedgerReason.ATTENDED, "b-2")
    assert ledger.balance("s-1") == 7.5
    assert sum(e.delta for e in ledger.history("s-1")) == 7.5
    assert ledger.balance("s-2") == 0


def test_debit_past_zero_is_refused_and_not_recorded() -> None:
    ledger = HourLedger([purchase("s-1", 0.5)])
    with pytest.raises(InsufficientHoursError) as err:
        ledger.debit("s-1", 1.0, LedgerReason.ATTENDED, "b-1")
    assert err.value.balance == 0.5
    assert len(ledger.entries) == 1


def test_no_show_may_overdraw() -> None:
    ledger = HourLedger([purchase("s-1", 0.5)])
    ledger.debit("s-1", 1.0, LedgerReason.NO_SHOW, "b-1")
    assert ledger.balance("s-1") == -0.5


def test_reasons_are_checked() -> None:
    ledger = HourLedger()
    with pytest.raises(ValueError):
        ledger.credit("s-1", 1.0, LedgerReason.ATTENDED)
    with pytest.raises(ValueError):
        ledger.debit("s-1", 1.0, LedgerReason.PURCHASE)
    with pytest.raises(ValueError):
        ledger.credit("s-1", 0, LedgerReason.PURCHASE)


def test_reverse_restores_balance_with_a_linked_entry() -> None:
    ledger = HourLedger([purchase("s-1", 10.0)])
    debit = ledger.debit("s-1", 2.0, LedgerReason.ATTENDED, "b-1")
    reversal = ledger.reverse(debit)
    assert reversal.reverses == debit.id
    assert reversal.reason == LedgerReason.REFUND
    assert ledger.balance("s-1") == 10.0
    assert ledger.net_for_booking("b-1") == 0


def test_retag_moves_the_charge_without_moving_the_balance() -> None:
    ledger = HourLedger([purchase("s-1", 10.0)])
    ledger.debit("s-1", 1.0, LedgerReason.ATTENDED, "b-1")
    refund, charge = ledger.retag("s-1", "b-1", LedgerReason.LEAVE_LATE)
    assert refund.delta == 1.0 and charge.delta == -1.0
    assert charge.reason == LedgerReason.LEAVE_LATE
    assert ledger.balance("s-1") == 9.0
    assert ledger.net_for_booking("b-1") == -1.0
    assert ledger.retag("s-1", "b-9", LedgerReason.NO_SHOW) == []
