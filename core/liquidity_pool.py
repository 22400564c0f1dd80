"""
Liquidity Pool Model.

This module simulates a single-coin liquidity venue with a deposit-zap style interface.
Depositing the coin mints an LP receipt token, withdrawing burns it. Both directions
charge a small fee that stays in the pool, so the value of one LP token (the virtual
price) only increases while the pool is healthy.

Deposits and withdrawals take a slippage floor and revert when the caller would get
less than it. The pool's coin may be an ERC20 token or the native currency.
"""

from chain import Contract, ETH_ADDRESS, external, payable, require, view
from erc20_token import ERC20Token
from model_config import MANTISSA, Config
from model_logging import get_logger

logger = get_logger("liquidity_pool")


class LiquidityPool(Contract):
    """
    Simulates a deposit venue that issues LP tokens against a single coin.
    """

    def __init__(self, chain, coin, lp_name, lp_symbol, fee_bps=None):
        super().__init__(chain)
        self.coin = coin
        self.fee_bps = Config.get_venue_params().pool_fee_bps if fee_bps is None else fee_bps

        # Amount of coin backing the LP supply
        self.reserves = 0

        lp_token = ERC20Token(chain, lp_name, lp_symbol)
        lp_token.add_minter(self.address)
        self.lp_token = lp_token.address

    def _lp_supply(self):
        return self.chain.contract(self.lp_token).total_supply

    def _apply_fee(self, amount):
        return amount - amount * self.fee_bps // 10_000

    @view
    def get_virtual_price(self):
        """Returns the value of one LP token in coin, scaled by MANTISSA."""
        supply = self._lp_supply()
        if supply == 0:
            return MANTISSA
        return self.reserves * MANTISSA // supply

    def calc_token_amount(self, amount):
        """Returns the LP tokens minted for depositing `amount` of coin."""
        supply = self._lp_supply()
        if supply == 0 or self.reserves == 0:
            return self._apply_fee(amount)
        return self._apply_fee(amount * supply // self.reserves)

    def calc_withdraw_one_coin(self, lp_amount):
        """Returns the coin paid out for burning `lp_amount` LP tokens."""
        supply = self._lp_supply()
        if supply == 0:
            return 0
        return self._apply_fee(lp_amount * self.reserves // supply)

    def _receive_coin(self, ctx, amount):
        if self.coin == ETH_ADDRESS:
            require(ctx.value == amount, "Invalid value")
        else:
            require(ctx.value == 0, "Invalid value")
            self.chain.call(self.address, self.coin, "transfer_from", ctx.sender, self.address, amount)

    def _send_coin(self, recipient, amount):
        if self.coin == ETH_ADDRESS:
            self.chain.transfer_native(self.address, recipient, amount)
        else:
            self.chain.call(self.address, self.coin, "transfer", recipient, amount)

    @payable
    def add_liquidity(self, ctx, amount, min_mint_amount):
        """
        Deposits `amount` of coin and mints LP tokens to the caller.

        Returns:
            Amount of LP tokens minted

        Raises:
            Revert: If fewer than `min_mint_amount` LP tokens would be minted
        """
        minted = self.calc_token_amount(amount)
        require(minted >= min_mint_amount, "Slippage screwed you")

        self._receive_coin(ctx, amount)
        self.reserves += amount
        self.chain.call(self.address, self.lp_token, "mint", ctx.sender, minted)
        self.emit("AddLiquidity", provider=ctx.sender, amount=amount, minted=minted)
        return minted

    @external
    def remove_liquidity_one_coin(self, ctx, lp_amount, min_amount):
        """
        Burns `lp_amount` of the caller's LP tokens and pays out the coin.

        Returns:
            Amount of coin paid out

        Raises:
            Revert: If less than `min_amount` of coin would be paid out
        """
        amount = self.calc_withdraw_one_coin(lp_amount)
        require(amount >= min_amount, "Not enough coins removed")

        self.chain.call(self.address, self.lp_token, "burn", ctx.sender, lp_amount)
        self.reserves -= amount
        self._send_coin(ctx.sender, amount)
        self.emit("RemoveLiquidityOne", provider=ctx.sender, lp_amount=lp_amount, amount=amount)
        return amount

    @payable
    def donate(self, ctx, amount):
        """Adds coin to the reserves without minting, e.g. trading fees earned elsewhere."""
        self._receive_coin(ctx, amount)
        self.reserves += amount

    def drain(self, recipient, amount):
        """
        Moves coin out of the pool without burning LP tokens.
        Models an exploit; used by tests and simulations.
        """
        amount = min(amount, self.reserves)
        self.reserves -= amount
        if self.coin == ETH_ADDRESS:
            self.chain.set_balance(self.address, self.chain.get_balance(self.address) - amount)
            self.chain.set_balance(recipient, self.chain.get_balance(recipient) + amount)
        else:
            token = self.chain.contract(self.coin)
            token.set_balance(self.address, token.balance_of(self.address) - amount)
            token.set_balance(recipient, token.balance_of(recipient) + amount)
        logger.warning("Pool %s drained of %s", self.address, amount)
        return amount
