"""
test_simulation.py - Unit tests for price-shock stress analysis

Tests:
- simulate_price_paths: shape, seeding, degenerate volatility
- compute_liquidation_price: boundary search against engine math
- stress_test_account: probabilities, read-only behaviour
"""

import numpy as np
import pytest

from issuance import (
    StressConfig, StressResult, compute_liquidation_price,
    simulate_price_paths, stress_test_account,
)

from tests.conftest import E18, E8, fund


class TestStressConfig:

    def test_defaults(self):
        config = StressConfig()
        assert config.n_simulations == 1000
        assert config.horizon_steps == 24

    @pytest.mark.parametrize("kwargs", [
        {"n_simulations": 0},
        {"horizon_steps": 0},
        {"dt": 0.0},
        {"annual_volatility": -0.1},
    ])
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            StressConfig(**kwargs)


class TestSimulatePricePaths:

    def test_shape_and_start(self):
        config = StressConfig(n_simulations=50, horizon_steps=10)
        paths = simulate_price_paths(2000.0, config, seed=1)
        assert paths.shape == (50, 11)
        assert np.all(paths[:, 0] == 2000.0)
        assert np.all(paths > 0)

    def test_seed_reproducible(self):
        config = StressConfig(n_simulations=20, horizon_steps=5)
        a = simulate_price_paths(1.0, config, seed=42)
        b = simulate_price_paths(1.0, config, seed=42)
        np.testing.assert_array_equal(a, b)

    def test_different_seeds_differ(self):
        config = StressConfig(n_simulations=20, horizon_steps=5)
        assert not np.array_equal(
            simulate_price_paths(1.0, config, seed=1),
            simulate_price_paths(1.0, config, seed=2),
        )

    def test_zero_volatility_is_flat(self):
        config = StressConfig(n_simulations=5, horizon_steps=4, annual_volatility=0.0)
        paths = simulate_price_paths(3.0, config, seed=0)
        np.testing.assert_allclose(paths, 3.0)


class TestComputeLiquidationPrice:

    def test_single_asset_position(self, indebted):
        # 10 ETH backing $100 is liquidatable strictly below $20
        assert compute_liquidation_price(indebted, "alice", "WETH") == 20 * E8 - 1

    def test_matches_engine_at_boundary(self, indebted, weth_feed):
        price = compute_liquidation_price(indebted, "alice", "WETH")
        weth_feed.update_price(price)
        assert indebted.is_liquidatable("alice")
        weth_feed.update_price(price + 1)
        assert not indebted.is_liquidatable("alice")

    def test_no_debt(self, deposited):
        assert compute_liquidation_price(deposited, "alice", "WETH") is None

    def test_no_balance_of_asset(self, indebted):
        assert compute_liquidation_price(indebted, "alice", "WBTC") is None

    def test_other_collateral_covers_debt(self, engine, weth, wbtc):
        fund(weth, "alice")
        fund(wbtc, "alice")
        engine.deposit_collateral("alice", "WBTC", E18)
        engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 100 * E18)
        assert compute_liquidation_price(engine, "alice", "WETH") == 0


class TestStressTestAccount:

    def test_flat_paths_never_liquidate(self, indebted):
        config = StressConfig(n_simulations=10, annual_volatility=0.0)
        result = stress_test_account(indebted, "alice", "WETH", config, seed=0)
        assert isinstance(result, StressResult)
        assert result.liquidation_probability == 0.0
        assert result.worst_health_factor == result.current_health_factor == 100 * E18
        assert result.current_price == 2000 * E8
        assert result.liquidation_price == 20 * E8 - 1
        assert result.n_simulations == 10

    def test_position_on_the_boundary(self, engine, weth):
        fund(weth, "alice")
        engine.deposit_collateral_and_mint_debt("alice", "WETH", E18, 1000 * E18)
        config = StressConfig(n_simulations=200, annual_volatility=0.8)
        result = stress_test_account(engine, "alice", "WETH", config, seed=7)
        assert 0.0 < result.liquidation_probability <= 1.0
        assert result.worst_health_factor < E18
        assert result.worst_health_factor <= result.median_health_factor <= E18

    def test_does_not_touch_engine(self, indebted, weth_feed):
        events = indebted.events
        stress_test_account(indebted, "alice", "WETH", StressConfig(n_simulations=20), seed=3)
        assert indebted.events == events
        assert weth_feed.latest_price() == (2000 * E8, 8)

    def test_seeded_runs_agree(self, indebted):
        config = StressConfig(n_simulations=50, annual_volatility=2.0)
        a = stress_test_account(indebted, "alice", "WETH", config, seed=11)
        b = stress_test_account(indebted, "alice", "WETH", config, seed=11)
        assert a == b
