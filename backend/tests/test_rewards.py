"""
Reward engine tests.

eligible = floor(total / 100) * 100, reward = floor(eligible * 0.05).
A period's eligible kg can be settled only once; later volume can top up.
"""

from decimal import Decimal
from datetime import datetime

import pytest

from steeltrack.errors import NothingToClaim, NotAuthorized, ValidationError
from steeltrack.extensions import db
from steeltrack.models import Reward
from steeltrack.models.rewards import REWARD_STATUS_CLAIMED
from steeltrack.services import ledger_service, reward_service, stock_service


MONTH = "2026-03"


def _sell(dealer, barbender, product, qty):
    stock_service.sell_to_barbender(dealer.id, barbender.id, product.id, qty)
    db.session.commit()


def _claim(user, month=MONTH):
    reward = reward_service.claim_reward(user.id, month)
    db.session.commit()
    return reward


class TestComputeReward:

    @pytest.mark.parametrize("total,eligible,reward", [
        ("0", "0", "0"),
        ("99", "0", "0"),
        ("100", "100", "5"),
        ("250", "200", "10"),
        ("1999.999", "1900", "95"),
        ("2000", "2000", "100"),
    ])
    def test_thresholds(self, app, total, eligible, reward):
        assert reward_service.compute_reward(Decimal(total)) == (Decimal(eligible), Decimal(reward))


class TestRewardPeriod:

    def test_month_bounds(self):
        start, end = reward_service.reward_period("2026-02")
        assert start == datetime(2026, 2, 1)
        assert end.date().isoformat() == "2026-02-28"

    def test_december_rolls_over(self):
        start, end = reward_service.reward_period("2025-12")
        assert (end.year, end.month, end.day) == (2025, 12, 31)

    def test_defaults_to_current_month(self, clock):
        start, _end = reward_service.reward_period(None)
        assert start == datetime(2026, 3, 1)

    @pytest.mark.parametrize("month", ["2026-13", "2026", "march", "2026-00", 202603, ["2026-03"]])
    def test_invalid_month(self, month):
        with pytest.raises(ValidationError):
            reward_service.reward_period(month)


class TestSummary:

    def test_summary_for_dealer_and_barbender(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 250)

        for user in (stocked_dealer, barbender):
            summary = reward_service.reward_summary(user.id)
            assert summary["total_kg"] == 250.0
            assert summary["eligible_kg"] == 200.0
            assert summary["reward_kg"] == 10.0
            assert summary["claimable_reward_kg"] == 10.0
            assert summary["current_balance"] == 250.0

    def test_purchases_are_not_counted(self, clock, barbender):
        stock_service.record_purchase(barbender.id, 500)
        db.session.commit()

        summary = reward_service.reward_summary(barbender.id, MONTH)
        assert summary["total_kg"] == 0.0
        assert summary["current_balance"] == 500.0

    def test_other_months_are_excluded(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 300)
        assert reward_service.reward_summary(stocked_dealer.id, "2026-04")["total_kg"] == 0.0

    def test_aso_has_no_rewards(self, clock, aso):
        with pytest.raises(NotAuthorized):
            reward_service.reward_summary(aso.id)


class TestClaim:

    def test_claim_credits_reward_account(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 250)
        reward = _claim(stocked_dealer)

        assert reward.status == REWARD_STATUS_CLAIMED
        assert reward.total_kg == Decimal("250")
        assert reward.eligible_kg == Decimal("200")
        assert reward.reward_kg == Decimal("10")
        assert stocked_dealer.reward_eligible_qty == Decimal("260")
        assert ledger_service.verify_balances() == []

    def test_below_threshold(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 99)
        with pytest.raises(NothingToClaim):
            reward_service.claim_reward(stocked_dealer.id, MONTH)

    def test_same_volume_cannot_be_claimed_twice(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 250)
        _claim(stocked_dealer)

        with pytest.raises(NothingToClaim) as exc:
            reward_service.claim_reward(stocked_dealer.id, MONTH)
        assert exc.value.details["already_claimed_eligible_kg"] == 200.0
        db.session.rollback()

        assert db.session.query(Reward).count() == 1
        assert stocked_dealer.reward_eligible_qty == Decimal("260")

    def test_top_up_after_crossing_next_threshold(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 250)
        _claim(stocked_dealer)
        _sell(stocked_dealer, barbender, product, 50)

        summary = reward_service.reward_summary(stocked_dealer.id, MONTH)
        assert summary["eligible_kg"] == 300.0
        assert summary["claimable_reward_kg"] == 5.0

        top_up = _claim(stocked_dealer)
        assert top_up.claimed_eligible_kg == Decimal("100")
        assert top_up.reward_kg == Decimal("5")
        assert [float(r.reward_kg) for r in reward_service.list_rewards(stocked_dealer.id)] == [5.0, 10.0]

    def test_dealer_and_barbender_claim_independently(self, stocked_dealer, barbender, product):
        _sell(stocked_dealer, barbender, product, 100)
        _claim(stocked_dealer)

        reward = _claim(barbender)
        assert reward.user_role == "BARBENDER"
        assert barbender.reward_eligible_qty == Decimal("105")
