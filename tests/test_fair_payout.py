"""
Tests for the fair payout table.
"""

import pytest

from economy_guard.fair_payout import DEFAULT_HOUSE_EDGE, FairPayoutManager


@pytest.fixture
def manager():
    return FairPayoutManager()


class TestHouseEdges:
    """Tests for house edge lookups."""

    def test_known_game(self, manager):
        assert manager.get_house_edge("blackjack") == 0.005
        assert manager.get_rtp("slots") == pytest.approx(0.97)

    def test_unknown_game_uses_default(self, manager):
        assert manager.get_house_edge("tiddlywinks") == DEFAULT_HOUSE_EDGE

    def test_lottery_style(self, manager):
        assert manager.is_lottery_style("lottery")
        assert manager.is_lottery_style("scratch_deluxe")
        assert not manager.is_lottery_style("slots")


class TestCalculateFairPayout:
    """Tests for calculate_fair_payout."""

    def test_applies_edge(self, manager):
        quote = manager.calculate_fair_payout("slots", 1000, 2.0)
        assert quote.fair_multiplier == pytest.approx(1.94)
        assert quote.payout == pytest.approx(1940)
        assert quote.won
        assert not quote.floor_applied

    def test_minimum_return_floor(self, manager):
        quote = manager.calculate_fair_payout("slots", 1000, 0.1)
        assert quote.payout == pytest.approx(800)
        assert quote.floor_applied
        assert not quote.won

    def test_lottery_has_no_floor(self, manager):
        quote = manager.calculate_fair_payout("lottery", 1000, 0)
        assert quote.payout == 0
        assert not quote.floor_applied

    def test_to_dict(self, manager):
        data = manager.calculate_fair_payout("roulette", 100, 36).to_dict()
        assert data["game_type"] == "roulette"
        assert "calculation" in data


class TestFairnessReport:
    """Tests for the fairness report and verification."""

    def test_categories(self, manager):
        assert manager.categorize_game(0.01) == "Very Fair"
        assert manager.categorize_game(0.03) == "Fair"
        assert manager.categorize_game(0.08) == "Standard"
        assert manager.categorize_game(0.15) == "High Edge"
        assert manager.categorize_game(0.35) == "Lottery Style"

    def test_report_lists_every_game(self, manager):
        report = manager.get_fairness_report()
        assert set(report["games"]) == set(manager.house_edges)
        assert report["games"]["blackjack"]["category"] == "Very Fair"

    def test_default_table_passes(self, manager):
        result = manager.verify_fairness()
        assert result["passed"]
        assert any("lottery" in w for w in result["warnings"])

    def test_extreme_edge_fails(self):
        manager = FairPayoutManager(house_edges={"rigged": 0.6})
        result = manager.verify_fairness()
        assert not result["passed"]
        assert result["issues"]
