"""
issuance - Collateralized-Debt Issuance Engine

Lock collateral, issue debt units against it, and let third parties liquidate
positions that fall below the minimum health factor.

Usage:
    from issuance import IssuanceEngine, Token, DebtToken, StaticPriceFeed

    weth = Token("WETH", "Wrapped Ether")
    dsc = DebtToken("DSC", owner="engine")
    feed = StaticPriceFeed(2000 * 10**8)          # $2000, 8 decimals
    engine = IssuanceEngine([weth], [feed], dsc, name="engine")

    weth.issue("alice", 10 * 10**18)
    weth.approve("alice", "engine", 10 * 10**18)
    engine.deposit_collateral_and_mint_debt("alice", "WETH", 10 * 10**18, 100 * 10**18)

    engine.health_factor("alice")                 # 100 * 10**18
"""

# Core types
from .core import (
    PriceFeed,
    TransferCapability,
    CollateralAsset,
    DebtTokenCapability,
    EngineConfig,
    EngineEvent,
    EventKind,
    AccountState,
    LiquidationResult,
    IssuanceError,
    InvalidAmount,
    UnsupportedAsset,
    TransferFailed,
    MintFailed,
    InsufficientBalance,
    HealthFactorBroken,
    HealthFactorAlreadyOk,
    HealthFactorNotImproved,
    ConfigurationMismatch,
    InvalidPrice,
    ReentrantCall,
    Unauthorized,
    RollbackFailed,
    BreaksHealthFactor,
    HealthFactorOk,
    TokenAddressesAndPriceFeedsLengthsMustMatch,
    calculate_health_factor,
    normalize_price,
    usd_value,
    token_amount_from_usd,
    liquidation_seizure,
    DEFAULT_CONFIG,
    PRECISION,
    PRECISION_DECIMALS,
    FEED_DECIMALS,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS,
    MIN_HEALTH_FACTOR,
)

# Ledgers
from .ledger import (
    BalanceChange,
    CollateralLedger,
    DebtLedger,
    Journal,
)

# Engine
from .engine import IssuanceEngine

# Price feeds
from .price_feed import (
    StaticPriceFeed,
    TimeSeriesPriceFeed,
)

# Tokens
from .token import (
    BaseToken,
    Token,
    DebtToken,
    TokenCustody,
)

# Stress simulation
from .simulation import (
    StressConfig,
    StressResult,
    simulate_price_paths,
    compute_liquidation_price,
    stress_test_account,
)

__all__ = [
    # Protocols
    'PriceFeed', 'TransferCapability', 'CollateralAsset', 'DebtTokenCapability',
    # Types
    'EngineConfig', 'EngineEvent', 'EventKind', 'AccountState', 'LiquidationResult',
    # Errors
    'IssuanceError', 'InvalidAmount', 'UnsupportedAsset', 'TransferFailed', 'MintFailed',
    'InsufficientBalance', 'HealthFactorBroken', 'HealthFactorAlreadyOk',
    'HealthFactorNotImproved', 'ConfigurationMismatch', 'InvalidPrice', 'ReentrantCall',
    'Unauthorized', 'RollbackFailed',
    'BreaksHealthFactor', 'HealthFactorOk', 'TokenAddressesAndPriceFeedsLengthsMustMatch',
    # Math
    'calculate_health_factor', 'normalize_price', 'usd_value', 'token_amount_from_usd',
    'liquidation_seizure',
    # Constants
    'DEFAULT_CONFIG', 'PRECISION', 'PRECISION_DECIMALS', 'FEED_DECIMALS',
    'ADDITIONAL_FEED_PRECISION', 'LIQUIDATION_THRESHOLD', 'LIQUIDATION_PRECISION',
    'LIQUIDATION_BONUS', 'MIN_HEALTH_FACTOR',
    # Ledgers
    'BalanceChange', 'CollateralLedger', 'DebtLedger', 'Journal',
    # Engine
    'IssuanceEngine',
    # Price feeds
    'StaticPriceFeed', 'TimeSeriesPriceFeed',
    # Tokens
    'BaseToken', 'Token', 'DebtToken', 'TokenCustody',
    # Simulation
    'StressConfig', 'StressResult', 'simulate_price_paths', 'compute_liquidation_price',
    'stress_test_account',
]

__version__ = '1.0.0'
