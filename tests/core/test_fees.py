"""Tests for yieldrunner/core/fees.py — performance-fee skim and group allocation."""

from __future__ import annotations

import pytest

from yieldrunner.core.fees import PerformanceFee, allocate_group, skim_fee


class TestPerformanceFee:
    def test_default_inactive(self):
        assert not PerformanceFee().active

    def test_needs_treasury_to_be_active(self):
        assert not PerformanceFee(fee_bps=100).active
        assert PerformanceFee(fee_bps=100, treasury="treasury").active

    def test_zero_fee_inactive_even_with_treasury(self):
        assert not PerformanceFee(fee_bps=0, treasury="treasury").active

    @pytest.mark.parametrize("bps", [-1, 10_001])
    def test_out_of_range(self, bps):
        with pytest.raises(ValueError):
            PerformanceFee(fee_bps=bps)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            PerformanceFee(fee_bps=True)  # type: ignore[arg-type]

    def test_empty_treasury_rejected(self):
        with pytest.raises(TypeError):
            PerformanceFee(fee_bps=1, treasury="")


class TestSkimFee:
    def test_inactive_returns_full_basis(self):
        assert skim_fee(1_000, PerformanceFee()) == (0, 1_000)

    def test_floors_fee(self):
        assert skim_fee(999, PerformanceFee(fee_bps=1_000, treasury="t")) == (99, 900)

    def test_zero_balance(self):
        assert skim_fee(0, PerformanceFee(fee_bps=1_000, treasury="t")) == (0, 0)

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            skim_fee(-1, PerformanceFee())


class TestAllocateGroup:
    def test_single_action_takes_all(self):
        assert allocate_group(101, [10_000]) == [101]

    def test_remainder_goes_to_last(self):
        assert allocate_group(101, [5_000, 5_000]) == [50, 51]

    def test_three_way_split_sums_to_basis(self):
        amounts = allocate_group(100, [3_333, 3_333, 3_334])
        assert amounts == [33, 33, 34]
        assert sum(amounts) == 100

    def test_partial_group_keeps_floors(self):
        assert allocate_group(101, [5_000]) == [50]

    def test_empty(self):
        assert allocate_group(100, []) == []

    def test_negative_basis_rejected(self):
        with pytest.raises(ValueError):
            allocate_group(-1, [10_000])
