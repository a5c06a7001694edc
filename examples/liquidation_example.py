"""
Example: Borrowing against collateral, a price crash, and a liquidation.

This example walks through the life of one over-collateralized position:
alice locks WETH and mints DSC, the WETH price collapses, and bob repays
part of her debt in exchange for her collateral plus the liquidation bonus.
A stress run then estimates how likely the surviving position is to be
liquidated again.
"""

import logging

from issuance import (
    DebtToken, IssuanceEngine, StaticPriceFeed, StressConfig, Token,
    HealthFactorBroken, stress_test_account,
)

E18 = 10 ** 18
E8 = 10 ** 8


def units(amount: int) -> str:
    return f"{amount / E18:,.4f}"


def show_account(engine: IssuanceEngine, account: str) -> None:
    debt, value = engine.account_information(account)
    print(f"  {account:<6} debt={units(debt):>12} DSC  collateral=${units(value):>14}  "
          f"health={units(engine.health_factor(account))}")


def main():
    print("=" * 80)
    print("COLLATERALIZED ISSUANCE - Crash and Liquidation Example")
    print("=" * 80)
    print()

    weth = Token("WETH", "Wrapped Ether")
    wbtc = Token("WBTC", "Wrapped Bitcoin")
    dsc = DebtToken("DSC", "Decentralized Stable Coin", owner="engine")
    weth_feed = StaticPriceFeed(2000 * E8)
    wbtc_feed = StaticPriceFeed(1000 * E8)
    engine = IssuanceEngine([weth, wbtc], [weth_feed, wbtc_feed], dsc, name="engine")

    print("Step 1: Open positions")
    print("-" * 80)
    print("alice locks 10 WETH ($20,000) and mints 100 DSC.")
    print("bob locks 1 WBTC ($1,000) and mints 100 DSC to act as liquidator.")
    print()

    weth.issue("alice", 10 * E18)
    weth.approve("alice", engine.name, 10 * E18)
    engine.deposit_collateral_and_mint_debt("alice", "WETH", 10 * E18, 100 * E18)

    wbtc.issue("bob", E18)
    wbtc.approve("bob", engine.name, E18)
    engine.deposit_collateral_and_mint_debt("bob", "WBTC", E18, 100 * E18)

    show_account(engine, "alice")
    show_account(engine, "bob")
    print()

    print("Step 2: Over-borrowing is refused")
    print("-" * 80)
    try:
        engine.mint_debt("alice", 10_000 * E18)
    except HealthFactorBroken as exc:
        print(f"  mint of 10,000 DSC rejected: {exc}")
    show_account(engine, "alice")
    print()

    print("Step 3: WETH crashes from $2,000 to $18")
    print("-" * 80)
    weth_feed.update_price(18 * E8)
    show_account(engine, "alice")
    print(f"  alice liquidatable: {engine.is_liquidatable('alice')}")
    print()

    print("Step 4: bob covers 5 DSC of alice's debt")
    print("-" * 80)
    dsc.approve("bob", engine.name, 5 * E18)
    result = engine.liquidate("bob", "WETH", "alice", 5 * E18)
    print(f"  collateral seized: {units(result.collateral_seized)} WETH "
          f"(bonus {units(result.bonus)} WETH)")
    print(f"  alice health: {units(result.starting_health_factor)} -> "
          f"{units(result.ending_health_factor)}")
    show_account(engine, "alice")
    show_account(engine, "bob")
    print()

    print("Step 5: Stress the remaining position")
    print("-" * 80)
    stress = stress_test_account(
        engine, "alice", "WETH", StressConfig(n_simulations=500), seed=42
    )
    print(f"  liquidation price: {stress.liquidation_price}")
    print(f"  probability of liquidation over {StressConfig().horizon_steps} hours: "
          f"{stress.liquidation_probability:.1%}")
    print()

    print("Audit trail")
    print("-" * 80)
    for event in engine.events:
        print(f"  {event!r}")
    print()

    return engine


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    main()
