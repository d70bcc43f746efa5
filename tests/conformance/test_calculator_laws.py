"""
Calculator Conformance Tests

INVARIANT: Every amount is an exact floor of the ideal percentage.

    ∀ collateral c, rate r ∈ [1, 100]:
        loan_amount(c) = ⌊c · 50 / 100⌋
        interest(p, r) = ⌊p · r / 100⌋
        rebate(i)      = ⌊i · 10 / 100⌋
        principal ≤ total_due ≤ principal + interest

Arithmetic is on unbounded integers, so no amount ever wraps or loses digits.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import datetime, timedelta

from collateral_ledger import (
    loan_amount_for, interest_for, rebate_for,
    is_eligible_for_rebate, quote_repayment,
)


amounts = st.integers(min_value=0, max_value=10**30)
rates = st.integers(min_value=1, max_value=100)
DUE = datetime(2025, 6, 1)
offsets = st.integers(min_value=-30 * 86400, max_value=30 * 86400)


class TestFloorLaws:
    """Each calculator function is an exact floor."""

    @given(amounts)
    @settings(max_examples=200)
    def test_loan_amount_floor(self, collateral):
        loan = loan_amount_for(collateral)
        assert loan * 100 <= collateral * 50 < (loan + 1) * 100

    @given(amounts)
    def test_loan_never_exceeds_collateral(self, collateral):
        assert loan_amount_for(collateral) <= collateral

    @given(amounts, rates)
    @settings(max_examples=200)
    def test_interest_floor(self, principal, rate):
        interest = interest_for(principal, rate)
        assert interest * 100 <= principal * rate < (interest + 1) * 100

    @given(amounts)
    def test_rebate_floor(self, interest):
        rebate = rebate_for(interest)
        assert rebate * 100 <= interest * 10 < (rebate + 1) * 100
        assert rebate <= interest


class TestQuoteLaws:
    """Properties of complete repayment quotes."""

    @given(amounts, rates, offsets)
    @settings(max_examples=200)
    def test_total_due_bounds(self, principal, rate, offset):
        quote = quote_repayment(principal, rate, DUE + timedelta(seconds=offset), DUE)
        assert principal <= quote.total_due <= principal + quote.interest

    @given(amounts, rates, offsets)
    def test_rebate_only_when_eligible(self, principal, rate, offset):
        now = DUE + timedelta(seconds=offset)
        quote = quote_repayment(principal, rate, now, DUE)
        assert quote.rebate_applied == is_eligible_for_rebate(now, DUE)
        if not quote.rebate_applied:
            assert quote.rebate == 0

    @given(amounts, rates, offsets, offsets)
    def test_paying_earlier_never_costs_more(self, principal, rate, a, b):
        early, late = sorted((a, b))
        early_quote = quote_repayment(principal, rate, DUE + timedelta(seconds=early), DUE)
        late_quote = quote_repayment(principal, rate, DUE + timedelta(seconds=late), DUE)
        assert early_quote.total_due <= late_quote.total_due
