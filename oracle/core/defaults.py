DEFAULT_YES_ODDS_PERCENT = 60.0
DEFAULT_NO_ODDS_PERCENT = 40.0
DEFAULT_OPTION_ODDS_PERCENT = 100.0

# Reference prices used to convert USD payouts into the staked asset.
ASSET_PRICES_USD = {
    "USD": 1.0,
    "BNB": 500.0,
    "CAKE": 3.5,
}
ASSET_BALANCE_FIELDS = {
    "USD": "balance",
    "BNB": "bnb_balance",
    "CAKE": "cake_balance",
}
DEFAULT_ASSET = "USD"

WIN_BASE_XP = 10
WIN_XP_PER_USD_DIVISOR = 5
LOSS_XP = -10
SMALL_STAKE_MAX_USD = 50
SMALL_STAKE_XP_MULTIPLIER = 5
LARGE_STAKE_MIN_USD = 1000
