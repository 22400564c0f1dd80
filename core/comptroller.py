"""
Comptroller Model.

This module simulates the Comptroller contract, the risk manager shared by all
markets. It keeps the list of supported markets and their collateral factors, the
underlying prices, the markets each account has entered, and decides whether a
borrow leaves the borrower with enough collateral.

Protection markets are listed with a collateral factor of zero: funds supplied to
them may be lost when their trigger fires, so they cannot back other borrows.
"""

from dataclasses import dataclass

from chain import Contract, external, require
from model_config import MANTISSA, Config
from model_logging import get_logger

logger = get_logger("comptroller")


@dataclass
class MarketInfo:
    """Risk parameters of a listed market."""
    collateral_factor: int  # Scaled by MANTISSA
    borrow_cap: int = 0     # 0 means no cap


class Comptroller(Contract):
    """
    Simulates the Comptroller contract.
    """

    # Reported back to markets as the detail of a COMPTROLLER_REJECTION failure
    NO_ERROR = 0
    INSUFFICIENT_LIQUIDITY = 4
    MARKET_NOT_ENTERED = 8
    MARKET_NOT_LISTED = 9

    def __init__(self, chain):
        super().__init__(chain)
        # market address -> MarketInfo
        self.markets = {}

        # market address -> price of one base unit of the underlying, scaled by MANTISSA
        self.prices = {}

        # account -> list of entered market addresses
        self.account_assets = {}

    def support_market(self, market, collateral_factor=None):
        """Lists a market. Admin operation."""
        if collateral_factor is None:
            collateral_factor = Config.get_market_params().collateral_factor
        self.markets[market] = MarketInfo(collateral_factor=collateral_factor)
        self.prices.setdefault(market, MANTISSA)

    def set_underlying_price(self, market, price):
        """Sets the oracle price for a market's underlying. Admin operation."""
        self.prices[market] = price

    def set_market_borrow_caps(self, markets, borrow_caps):
        """Sets borrow caps, 0 removes the cap. Admin operation."""
        for market, cap in zip(markets, borrow_caps):
            self.markets[market].borrow_cap = cap

    def get_assets_in(self, account):
        return list(self.account_assets.get(account, []))

    def check_membership(self, account, market):
        return market in self.account_assets.get(account, [])

    def _add_to_market(self, market, account):
        if market not in self.markets:
            return self.MARKET_NOT_LISTED
        assets = self.account_assets.setdefault(account, [])
        if market not in assets:
            assets.append(market)
            self.emit("MarketEntered", market=market, account=account)
        return self.NO_ERROR

    @external
    def enter_markets(self, ctx, markets):
        """
        Adds the caller's supply in `markets` to its collateral.

        Returns:
            One error code per market
        """
        return [self._add_to_market(market, ctx.sender) for market in markets]

    def get_hypothetical_account_liquidity(self, account, market_modify=None, redeem_amount=0, borrow_amount=0):
        """
        Computes the account's liquidity as if it redeemed `redeem_amount` of underlying from
        and borrowed `borrow_amount` more from `market_modify`.

        Returns:
            Tuple of (error, liquidity, shortfall); at most one of the last two is positive
        """
        collateral = 0
        borrows = 0
        for asset in self.account_assets.get(account, []):
            market = self.chain.contract(asset)
            price = self.prices.get(asset, MANTISSA)
            info = self.markets[asset]

            collateral += market.supply_balance(account) * info.collateral_factor * price // (MANTISSA * MANTISSA)
            borrows += market.borrow_balance_stored(account) * price // MANTISSA
            if asset == market_modify:
                borrows += redeem_amount * info.collateral_factor * price // (MANTISSA * MANTISSA)
                borrows += borrow_amount * price // MANTISSA

        if collateral >= borrows:
            return self.NO_ERROR, collateral - borrows, 0
        return self.NO_ERROR, 0, borrows - collateral

    def get_account_liquidity(self, account):
        return self.get_hypothetical_account_liquidity(account)

    @external
    def borrow_allowed(self, ctx, market, borrower, borrow_amount):
        """
        Called by a market before it lends. Returns NO_ERROR if the borrow may proceed.
        """
        if market not in self.markets:
            return self.MARKET_NOT_LISTED

        if not self.check_membership(borrower, market):
            # Only the market itself can add a borrower to its membership
            if ctx.sender != market:
                return self.MARKET_NOT_ENTERED
            self._add_to_market(market, borrower)

        cap = self.markets[market].borrow_cap
        require(cap == 0 or self.chain.contract(market).total_borrows + borrow_amount <= cap, "market borrow cap reached")

        _, _, shortfall = self.get_hypothetical_account_liquidity(borrower, market, borrow_amount=borrow_amount)
        if shortfall > 0:
            logger.debug("Borrow of %s by %s rejected, shortfall %s", borrow_amount, borrower, shortfall)
            return self.INSUFFICIENT_LIQUIDITY
        return self.NO_ERROR

    @external
    def redeem_allowed(self, ctx, market, redeemer, redeem_amount):
        """
        Called by a market before it pays out supplied funds. Redeeming must not leave
        the redeemer's borrows undercollateralized.
        """
        if market not in self.markets:
            return self.MARKET_NOT_LISTED
        if not self.check_membership(redeemer, market):
            return self.NO_ERROR

        _, _, shortfall = self.get_hypothetical_account_liquidity(redeemer, market, redeem_amount=redeem_amount)
        if shortfall > 0:
            return self.INSUFFICIENT_LIQUIDITY
        return self.NO_ERROR
