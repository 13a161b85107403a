"""Unit tests for the running average arithmetic."""

from decimal import Decimal

import pytest

from kebabkartan.logic.running_average import add_vote, replace_vote


class TestAddVote:
    def test_first_vote_becomes_average(self):
        assert add_vote(Decimal(0), 0, Decimal(4)) == (Decimal(4), 1)

    def test_negative_count_treated_as_empty(self):
        assert add_vote(Decimal(3), -2, Decimal(5)) == (Decimal(5), 1)

    def test_running_average(self):
        average, total = add_vote(Decimal(4), 2, Decimal(1))

        assert average == Decimal(3)
        assert total == 3

    def test_sequence_matches_arithmetic_mean(self):
        votes = [Decimal(v) for v in ("5", "3", "4", "1", "2.5")]
        average, total = Decimal(0), 0
        for vote in votes:
            average, total = add_vote(average, total, vote)

        assert total == len(votes)
        assert average == pytest.approx(sum(votes) / len(votes))

    def test_result_clamped_to_star_range(self):
        """A drifted stored average never leaves 1..5."""
        average, _ = add_vote(Decimal("5.4"), 10, Decimal(5))

        assert average == Decimal(5)


class TestReplaceVote:
    def test_replaces_without_changing_count(self):
        average, total = replace_vote(Decimal(4), 2, Decimal(3), Decimal(5))

        assert average == Decimal(5)
        assert total == 2

    def test_single_vote_replaced(self):
        assert replace_vote(Decimal(2), 1, Decimal(2), Decimal(4)) == (Decimal(4), 1)

    def test_empty_aggregate_falls_back_to_add(self):
        assert replace_vote(Decimal(0), 0, Decimal(3), Decimal(4)) == (Decimal(4), 1)

    def test_result_clamped(self):
        average, _ = replace_vote(Decimal(1), 2, Decimal(5), Decimal(1))

        assert average == Decimal(1)
