"""
Test suite for payment reconciliation

Tests the allocation waterfall, full-history replay, extra amortization
and remaining principal roll-down.
"""

import pytest
from dataclasses import replace
from decimal import Decimal
from datetime import date, datetime, timezone

from debt_ledger.models import DebtTerms, Installment, InstallmentStatus, PaymentEvent
from debt_ledger.exceptions import DebtNotFoundError, InvalidPaymentError
from debt_ledger.schedule import build_schedule
from debt_ledger.reconcile import allocate_waterfall, reconcile, roll_remaining_principal


DEBT_ID = "debt-1"


def make_installment(number, interest='10', principal='90', fees='0', **overrides):
    values = dict(
        id=f"{DEBT_ID}_{number}",
        debt_id=DEBT_ID,
        number=number,
        due_date=datetime(2024, number, 15, 12, tzinfo=timezone.utc),
        expected_interest=Decimal(interest),
        expected_principal=Decimal(principal),
        expected_fees=Decimal(fees),
        expected_total=Decimal(interest) + Decimal(principal) + Decimal(fees),
    )
    values.update(overrides)
    return Installment(**values)


def make_event(seq, amount, day=1, installment_id=None, extra=False, debt_id=DEBT_ID):
    return PaymentEvent(
        id=f"{debt_id}_{seq:08d}",
        debt_id=debt_id,
        amount=Decimal(amount),
        paid_at=datetime(2024, 1, day, 9, tzinfo=timezone.utc),
        installment_id=installment_id,
        is_extra_amortization=extra,
    )


class TestWaterfall:
    """Test fees, interest, principal allocation order"""

    def test_fees_then_interest_then_principal(self):
        installment = make_installment(1, interest='10', principal='100', fees='5')
        allocation = allocate_waterfall(installment, Decimal('15'))

        updated = allocation.installment
        assert updated.paid_fees == Decimal('5.00')
        assert updated.paid_interest == Decimal('10.00')
        assert updated.paid_principal == Decimal('0.00')
        assert updated.paid_total == Decimal('15.00')
        assert updated.status == InstallmentStatus.PARTIALLY_PAID
        assert allocation.remainder == Decimal('0')

    def test_fees_exhausted_before_interest(self):
        installment = make_installment(1, interest='20', principal='100', fees='10')
        updated = allocate_waterfall(installment, Decimal('15')).installment
        assert (updated.paid_fees, updated.paid_interest, updated.paid_principal) == (
            Decimal('10.00'), Decimal('5.00'), Decimal('0.00')
        )

    def test_full_payment_returns_remainder(self):
        allocation = allocate_waterfall(make_installment(1), Decimal('130'))
        assert allocation.installment.status == InstallmentStatus.PAID
        assert allocation.installment.paid_total == Decimal('100.00')
        assert allocation.remainder == Decimal('30')

    def test_paid_never_exceeds_expected(self):
        allocation = allocate_waterfall(make_installment(1, fees='3'), Decimal('1000'))
        updated = allocation.installment
        assert updated.paid_fees == updated.expected_fees
        assert updated.paid_interest == updated.expected_interest
        assert updated.paid_principal == updated.expected_principal

    def test_sub_cent_amount_rounded_once(self):
        """Test that every cent credited is a cent taken from the amount"""
        installment = make_installment(1, interest='0', principal='10.01')

        short = allocate_waterfall(installment, Decimal('10.004'))
        assert short.installment.paid_principal == Decimal('10.00')
        assert short.installment.status == InstallmentStatus.PARTIALLY_PAID
        assert short.remainder == Decimal('0')

        over = allocate_waterfall(installment, Decimal('10.015'))
        assert over.installment.paid_total == Decimal('10.01')
        assert over.remainder == Decimal('0.01')

    def test_input_not_mutated(self):
        installment = make_installment(1)
        allocate_waterfall(installment, Decimal('50'))
        assert installment.paid_total == Decimal('0')


class TestReplay:
    """Test full-history replay"""

    def test_sequential_allocation(self):
        installments = [make_installment(n) for n in (1, 2, 3)]
        result = reconcile(DEBT_ID, Decimal('270'), installments, [make_event(1, '150')])

        first, second, third = result.installments
        assert first.status == InstallmentStatus.PAID
        assert second.paid_total == Decimal('50.00')
        assert second.paid_interest == Decimal('10.00')
        assert second.status == InstallmentStatus.PARTIALLY_PAID
        assert third.status == InstallmentStatus.PENDING
        assert result.remaining_principal == Decimal('140.00')

    def test_replay_is_idempotent(self):
        """Test that replaying the same history twice gives the same result"""
        installments = [make_installment(n) for n in (1, 2, 3)]
        events = [make_event(1, '120'), make_event(2, '45', day=2)]

        first = reconcile(DEBT_ID, Decimal('270'), installments, events)
        second = reconcile(DEBT_ID, Decimal('270'), list(first.installments), events)

        assert first == second

    def test_event_order_is_by_paid_at(self):
        installments = [make_installment(n) for n in (1, 2)]
        late = make_event(1, '100', day=20, installment_id=f"{DEBT_ID}_2")
        early = make_event(2, '100', day=3)

        forward = reconcile(DEBT_ID, Decimal('180'), installments, [late, early])
        backward = reconcile(DEBT_ID, Decimal('180'), installments, [early, late])

        assert forward == backward
        assert all(i.status == InstallmentStatus.PAID for i in forward.installments)

    def test_equal_timestamps_replay_by_id(self):
        """Test that numeric ids order numerically, not as text"""
        paid_at = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)
        ninth = PaymentEvent(id=9, debt_id=DEBT_ID, amount=Decimal('10'), paid_at=paid_at)
        tenth = PaymentEvent(id=10, debt_id=DEBT_ID, amount=Decimal('10'), paid_at=paid_at)

        assert [e.id for e in sorted([tenth, ninth], key=lambda e: e.replay_key)] == [9, 10]

    def test_shared_cursor_across_events(self):
        """Test that a targeted remainder and later payments share one cursor"""
        installments = [make_installment(n) for n in (1, 2)]
        events = [
            make_event(1, '150', day=1, installment_id=f"{DEBT_ID}_2"),
            make_event(2, '60', day=2),
        ]

        result = reconcile(DEBT_ID, Decimal('180'), installments, events)

        assert all(i.status == InstallmentStatus.PAID for i in result.installments)
        assert result.absorbed_excess == Decimal('10.00')
        assert result.remaining_principal == Decimal('0.00')

    def test_unknown_target_allocates_sequentially(self):
        installments = [make_installment(n) for n in (1, 2)]
        result = reconcile(
            DEBT_ID, Decimal('180'), installments,
            [make_event(1, '100', installment_id="missing")]
        )
        assert result.installments[0].status == InstallmentStatus.PAID
        assert result.installments[1].status == InstallmentStatus.PENDING

    def test_previous_paid_amounts_are_discarded(self):
        """Test that persisted paid amounts are rebuilt from events only"""
        stale = make_installment(1, paid_total=Decimal('100'), paid_interest=Decimal('10'),
                                 paid_principal=Decimal('90'), status=InstallmentStatus.PAID)
        result = reconcile(DEBT_ID, Decimal('90'), [stale], [])
        assert result.installments[0].paid_total == Decimal('0.00')
        assert result.installments[0].status == InstallmentStatus.PENDING
        assert result.remaining_principal == Decimal('90.00')

    def test_excess_is_absorbed(self):
        installments = [make_installment(1)]
        result = reconcile(DEBT_ID, Decimal('90'), installments, [make_event(1, '250')])
        assert result.absorbed_excess == Decimal('150.00')
        assert result.installments[0].paid_total == Decimal('100.00')


class TestExtraAmortization:
    """Test payments that reduce principal directly"""

    def test_remainder_reduces_principal_only(self):
        """Test that an extra amortization leftover never pays other installments"""
        installments = [make_installment(n) for n in (1, 2, 3)]
        event = make_event(1, '150', installment_id=f"{DEBT_ID}_1", extra=True)

        result = reconcile(DEBT_ID, Decimal('270'), installments, [event])

        first, second, third = result.installments
        assert first.status == InstallmentStatus.PAID
        assert first.extra_principal_paid == Decimal('50.00')
        assert first.remaining_principal_after == Decimal('130.00')
        assert second.paid_total == Decimal('0.00')
        assert third.paid_total == Decimal('0.00')
        assert third.remaining_principal_after == Decimal('130.00')
        assert result.extra_amortization == Decimal('50.00')
        assert result.remaining_principal == Decimal('130.00')

    def test_balance_never_negative(self):
        installments = [make_installment(1, interest='0', principal='100')]
        event = make_event(1, '500', installment_id=f"{DEBT_ID}_1", extra=True)

        result = reconcile(DEBT_ID, Decimal('100'), installments, [event])

        assert result.remaining_principal == Decimal('0.00')
        assert result.extra_amortization == Decimal('0.00')
        assert result.absorbed_excess == Decimal('400.00')

    def test_untargeted_extra_past_last_installment(self):
        installments = [make_installment(n) for n in (1, 2)]
        events = [make_event(1, '100'), make_event(2, '130', day=2, extra=True)]

        result = reconcile(DEBT_ID, Decimal('200'), installments, events)

        assert result.extra_amortization == Decimal('20.00')
        assert result.installments[-1].extra_principal_paid == Decimal('20.00')
        assert result.remaining_principal == Decimal('0.00')


class TestOverdue:
    """Test that the replay keeps the time-based status"""

    def test_overdue_survives_replay(self):
        installments = [make_installment(1, status=InstallmentStatus.OVERDUE), make_installment(2)]
        result = reconcile(DEBT_ID, Decimal('180'), installments, [])
        assert result.installments[0].status == InstallmentStatus.OVERDUE

    def test_partial_payment_on_overdue(self):
        installments = [make_installment(1, status=InstallmentStatus.OVERDUE)]
        result = reconcile(DEBT_ID, Decimal('90'), installments, [make_event(1, '40')])
        assert result.installments[0].status == InstallmentStatus.PARTIALLY_PAID

    def test_full_payment_on_overdue(self):
        installments = [make_installment(1, status=InstallmentStatus.OVERDUE)]
        result = reconcile(DEBT_ID, Decimal('90'), installments, [make_event(1, '100')])
        assert result.installments[0].status == InstallmentStatus.PAID


class TestInvalidInput:
    """Test rejected replays"""

    def test_missing_debt(self):
        with pytest.raises(DebtNotFoundError):
            reconcile(None, Decimal('90'), [make_installment(1)], [])

    def test_non_positive_amount(self):
        with pytest.raises(InvalidPaymentError, match="positive"):
            reconcile(DEBT_ID, Decimal('90'), [make_installment(1)], [make_event(1, '0')])

    def test_event_of_another_debt(self):
        with pytest.raises(InvalidPaymentError, match="another debt"):
            reconcile(DEBT_ID, Decimal('90'), [make_installment(1)], [make_event(1, '10', debt_id="other")])

    def test_no_installments(self):
        result = reconcile(DEBT_ID, Decimal('500'), [], [make_event(1, '100')])
        assert result.installments == ()
        assert result.remaining_principal == Decimal('500.00')
        assert result.absorbed_excess == Decimal('100.00')


class TestRollDown:
    """Test remaining principal roll-down"""

    def test_floor_at_zero(self):
        rows = [make_installment(1, paid_principal=Decimal('90')), make_installment(2, paid_principal=Decimal('90'))]
        rolled, balance = roll_remaining_principal(Decimal('100'), rows)
        assert rolled[0].remaining_principal_after == Decimal('10.00')
        assert rolled[1].remaining_principal_after == Decimal('0.00')
        assert balance == Decimal('0')


class TestEndToEnd:
    """Test a projected schedule paid installment by installment"""

    def test_matching_payments_settle_the_debt(self):
        terms = DebtTerms(
            principal=Decimal('12000'),
            rate_type="fixed_nominal_month",
            amortization_system="PRICE",
            term_months=12,
            start_date=date(2024, 1, 15),
            nominal_rate=Decimal('0.01'),
        )
        schedule = [
            replace(row, id=f"{DEBT_ID}_{row.number}", debt_id=DEBT_ID)
            for row in build_schedule(terms)
        ]
        events = [
            PaymentEvent(
                id=f"{DEBT_ID}_{row.number:08d}",
                debt_id=DEBT_ID,
                amount=row.expected_total,
                paid_at=row.due_date,
                installment_id=row.id,
            )
            for row in schedule
        ]

        result = reconcile(DEBT_ID, terms.principal, schedule, events)

        assert all(i.status == InstallmentStatus.PAID for i in result.installments)
        assert result.installments[-1].remaining_principal_after == Decimal('0.00')
        assert result.remaining_principal == Decimal('0.00')
