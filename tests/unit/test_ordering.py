"""Unit tests for sibling ordering weights."""

import pytest

from outlinekit import ordering
from factories import make_block


class TestBetween:
    """Test midpoint weight calculation."""

    def test_empty_group_starts_at_one(self):
        assert ordering.between(None, None) == 1.0

    def test_insert_at_start_halves_first_weight(self):
        assert ordering.between(None, 4.0) == 2.0

    def test_insert_at_end_adds_one(self):
        assert ordering.between(3.0, None) == 4.0

    def test_insert_between_takes_midpoint(self):
        assert ordering.between(1.0, 2.0) == 1.5

    def test_result_is_strictly_between_neighbours(self):
        before, after = 1.0, 1.0 + 1e-6
        weight = ordering.between(before, after)
        assert before < weight < after


class TestRebalancing:
    """Test precision exhaustion detection."""

    def test_healthy_gap(self):
        assert not ordering.needs_rebalancing(1.0, 2.0)

    def test_gap_too_small(self):
        assert ordering.needs_rebalancing(1.0, 1.0 + 1e-11)

    def test_first_weight_too_small(self):
        assert ordering.needs_rebalancing(None, 1e-6)
        assert not ordering.needs_rebalancing(None, 0.5)

    def test_last_weight_too_large(self):
        assert ordering.needs_rebalancing(1e16, None)
        assert not ordering.needs_rebalancing(100.0, None)

    def test_empty_group_never_needs_rebalancing(self):
        assert not ordering.needs_rebalancing(None, None)

    def test_rebalanced_weights(self):
        assert ordering.rebalanced(3) == [1.0, 2.0, 3.0]

    def test_repeated_halving_eventually_needs_rebalancing(self):
        before, after = 1.0, 2.0
        for _ in range(100):
            if ordering.needs_rebalancing(before, after):
                break
            after = ordering.between(before, after)
        else:
            pytest.fail("gap never flagged for rebalancing")


class TestSortKey:
    """Test deterministic sibling ordering."""

    def test_equal_weights_break_ties_by_id(self):
        blocks = [make_block("b", weight=1.0), make_block("a", weight=1.0), make_block("c", weight=0.5)]
        assert [block.id for block in sorted(blocks, key=ordering.sort_key)] == ["c", "a", "b"]
