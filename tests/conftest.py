"""
conftest.py - Shared pytest fixtures for issuance engine tests

Provides common fixtures used across unit, conformance and functional tests:
- Tokens and price feeds (WETH at $2000, WBTC at $1000)
- A two-asset engine that owns its debt token
- Funded, deposited and indebted users
- Helpers for building engines and checking conservation
"""

import pytest

from issuance import (
    DebtToken,
    IssuanceEngine,
    StaticPriceFeed,
    Token,
)


ENGINE = "engine"
E18 = 10 ** 18
E8 = 10 ** 8

WETH_PRICE = 2000 * E8
WBTC_PRICE = 1000 * E8

STARTING_BALANCE = 10 * E18
AMOUNT_COLLATERAL = 10 * E18
AMOUNT_TO_MINT = 100 * E18


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def build_engine(assets, feeds, debt_token=None, **kwargs):
    """Engine named ENGINE that owns `debt_token` (a fresh DSC if omitted)."""
    if debt_token is None:
        debt_token = DebtToken("DSC", owner=ENGINE)
    return IssuanceEngine(assets, feeds, debt_token, name=ENGINE, **kwargs)


def fund(token: Token, user: str, amount: int = STARTING_BALANCE, approve: bool = True) -> None:
    """Give `user` tokens and optionally approve the engine to pull them."""
    token.issue(user, amount)
    if approve:
        token.approve(user, ENGINE, amount)


def open_position(engine, token, user, collateral=AMOUNT_COLLATERAL, debt=AMOUNT_TO_MINT):
    """Fund `user`, deposit `collateral` and mint `debt` in one step."""
    fund(token, user, collateral)
    engine.deposit_collateral_and_mint_debt(user, token.symbol, collateral, debt)


def snapshot(engine) -> dict:
    """Everything an outside observer can see: books, token balances, allowances, events."""
    tokens = [engine._assets[a] for a in engine.collateral_assets] + [engine.debt_token]
    return {
        "accounts": {a: engine.account_state(a) for a in sorted(engine.accounts())},
        "total_debt": engine.total_debt(),
        "balances": {t.symbol: t.holders() for t in tokens},
        "allowances": {
            t.symbol: {o: dict(s) for o, s in t._allowances.items()} for t in tokens
        },
        "supply": {t.symbol: t.total_supply() for t in tokens},
        "events": engine.events,
    }


def assert_books_match_custody(engine) -> None:
    """Ledger totals equal what the engine actually holds and has issued."""
    for asset in engine.collateral_assets:
        token = engine._assets[asset]
        assert engine.total_collateral(asset) == token.balance_of(engine.name)
    dsc = engine.debt_token
    assert engine.total_debt() == dsc.total_supply()
    assert dsc.balance_of(engine.name) == 0


# =============================================================================
# TOKEN AND FEED FIXTURES
# =============================================================================

@pytest.fixture
def weth():
    return Token("WETH", "Wrapped Ether")


@pytest.fixture
def wbtc():
    return Token("WBTC", "Wrapped Bitcoin")


@pytest.fixture
def dsc():
    return DebtToken("DSC", "Decentralized Stable Coin", owner=ENGINE)


@pytest.fixture
def weth_feed():
    return StaticPriceFeed(WETH_PRICE)


@pytest.fixture
def wbtc_feed():
    return StaticPriceFeed(WBTC_PRICE)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine(weth, wbtc, weth_feed, wbtc_feed, dsc):
    """Engine accepting WETH and WBTC, owning DSC."""
    return IssuanceEngine([weth, wbtc], [weth_feed, wbtc_feed], dsc, name=ENGINE)


@pytest.fixture
def funded_user(weth):
    """alice holds STARTING_BALANCE WETH and has approved the engine."""
    fund(weth, "alice")
    return "alice"


@pytest.fixture
def deposited(engine, weth, funded_user):
    """alice has deposited AMOUNT_COLLATERAL WETH and owes nothing."""
    engine.deposit_collateral(funded_user, "WETH", AMOUNT_COLLATERAL)
    return engine


@pytest.fixture
def indebted(engine, weth, funded_user):
    """alice has deposited AMOUNT_COLLATERAL WETH and minted AMOUNT_TO_MINT DSC."""
    engine.deposit_collateral_and_mint_debt(funded_user, "WETH", AMOUNT_COLLATERAL, AMOUNT_TO_MINT)
    return engine
