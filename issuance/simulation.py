"""
simulation.py - Price-shock stress analysis for engine positions

Answers "how far can this collateral fall before the account is liquidatable,
and how likely is that over a horizon" without touching engine state.

Price paths follow geometric Brownian motion. Path generation is vectorized
with numpy; health factors are then recomputed with the engine's own integer
math so the results agree exactly with what liquidate() would see.

Key Formulas:
    log_return = (mu - sigma^2 / 2) * dt + sigma * sqrt(dt) * Z
    liquidation when discounted collateral value < min_health_factor * debt
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .core import calculate_health_factor, usd_value
from .engine import IssuanceEngine


@dataclass(frozen=True)
class StressConfig:
    """Parameters for the GBM price simulation."""

    n_simulations: int = 1_000
    """Number of independent price paths."""

    horizon_steps: int = 24
    """Steps per path (hourly steps over one day by default)."""

    dt: float = 1.0 / (365.0 * 24.0)
    """Step size as a fraction of one year."""

    annual_volatility: float = 0.80
    """Annualised volatility (sigma)."""

    mu: float = 0.0
    """Drift; zero for a risk-neutral view."""

    def __post_init__(self):
        if self.n_simulations <= 0:
            raise ValueError(f"n_simulations must be positive, got {self.n_simulations}")
        if self.horizon_steps <= 0:
            raise ValueError(f"horizon_steps must be positive, got {self.horizon_steps}")
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        if self.annual_volatility < 0:
            raise ValueError(f"annual_volatility cannot be negative, got {self.annual_volatility}")


@dataclass(frozen=True)
class StressResult:
    """Summary of a stress run for one account and one collateral asset."""
    account: str
    asset: str
    current_price: int
    current_health_factor: int
    liquidation_price: Optional[int]
    liquidation_probability: float
    worst_health_factor: int
    median_health_factor: int
    n_simulations: int


def simulate_price_paths(
    initial_price: float,
    config: Optional[StressConfig] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Simulate geometric Brownian motion price paths.

    Returns:
        Array of shape (n_simulations, horizon_steps + 1); column 0 is
        initial_price.
    """
    if config is None:
        config = StressConfig()

    rng = np.random.default_rng(seed)
    sigma = config.annual_volatility
    dt = config.dt

    z = rng.standard_normal((config.n_simulations, config.horizon_steps))
    log_increments = (config.mu - 0.5 * sigma ** 2) * dt + sigma * np.sqrt(dt) * z

    cumulative = np.cumsum(log_increments, axis=1)
    cumulative = np.column_stack([np.zeros(config.n_simulations), cumulative])

    return initial_price * np.exp(cumulative)


def _other_collateral_value(engine: IssuanceEngine, account: str, asset: str) -> int:
    state = engine.account_state(account)
    return sum(
        engine.usd_value(other, amount)
        for other, amount in state.collateral.items()
        if other != asset and amount
    )


def compute_liquidation_price(engine: IssuanceEngine, account: str, asset: str) -> Optional[int]:
    """
    Highest feed price of `asset` at which `account` is liquidatable.

    Other collateral is held at current prices. The result is in the feed's
    own decimals, so it can be compared directly with latest_price().

    Returns:
        None if the account has no debt or holds none of the asset.
        0 if no positive price makes the account liquidatable.
    """
    debt = engine.debt_of(account)
    amount = engine.collateral_balance(account, asset)
    if debt == 0 or amount == 0:
        return None

    config = engine.config
    _, decimals = engine.price_feed(asset).latest_price()
    other_value = _other_collateral_value(engine, account, asset)

    def is_liquidatable(feed_price: int) -> bool:
        value = other_value + usd_value(amount, feed_price, decimals, config.precision)
        return calculate_health_factor(debt, value, config) < config.min_health_factor

    if not is_liquidatable(1):
        return 0

    # Health factor is monotone in price: find the boundary by doubling then bisection
    low, high = 1, 2
    while is_liquidatable(high):
        low, high = high, high * 2
    while high - low > 1:
        mid = (low + high) // 2
        if is_liquidatable(mid):
            low = mid
        else:
            high = mid
    return low


def stress_test_account(
    engine: IssuanceEngine,
    account: str,
    asset: str,
    config: Optional[StressConfig] = None,
    seed: Optional[int] = None,
) -> StressResult:
    """
    Shock one collateral asset along simulated paths and score the account.

    Each path's lowest price is applied to the account's current books; the
    account counts as liquidated on that path if its health factor at that
    price falls below the minimum. Read-only: the engine is not modified.
    """
    if config is None:
        config = StressConfig()

    price, decimals = engine.price_feed(asset).latest_price()
    debt = engine.debt_of(account)
    amount = engine.collateral_balance(account, asset)
    other_value = _other_collateral_value(engine, account, asset)
    engine_config = engine.config

    paths = simulate_price_paths(1.0, config, seed)
    shocks = paths.min(axis=1)

    factors = []
    for shock in shocks.tolist():
        # Python ints keep 18-decimal feeds exact; clamp so a price never reaches zero
        shocked_price = max(int(shock * price), 1)
        value = other_value + (usd_value(amount, shocked_price, decimals, engine_config.precision) if amount else 0)
        factors.append(calculate_health_factor(debt, value, engine_config))

    breaches = sum(1 for f in factors if f < engine_config.min_health_factor)
    ordered = sorted(factors)

    return StressResult(
        account=account,
        asset=asset,
        current_price=price,
        current_health_factor=engine.health_factor(account),
        liquidation_price=compute_liquidation_price(engine, account, asset),
        liquidation_probability=breaches / len(factors),
        worst_health_factor=ordered[0],
        median_health_factor=ordered[len(ordered) // 2],
        n_simulations=config.n_simulations,
    )
