"""
Invest Adapter Model.

Logic contracts that let a proxy wallet borrow from a market and put the proceeds to
work in a yield venue in one transaction, and unwind the position later.

An adapter is only ever run with delegation from the user's proxy, so every borrow,
deposit and transfer below is made by the proxy and the position is owned by it. The
adapter itself stores nothing but the addresses it was configured with. The size of a
position is the proxy's staked balance in the gauge.

invest:  borrow -> add liquidity to the pool -> stake the LP tokens in the gauge
divest:  unstake -> remove liquidity -> repay as much debt as possible
         -> send what is left and the claimed rewards to the recipient
"""

from chain import Contract, external, require
from erc20_token import ensure_allowance
from model_logging import get_logger

logger = get_logger("invest_adapter")


class InvestAdapter(Contract):
    """
    Steps shared by every adapter. Subclasses implement `invest` and `divest` for the
    kind of underlying they borrow.
    """

    def __init__(self, chain, money_market, protection_market, pool, gauge):
        super().__init__(chain)
        self.money_market = money_market
        self.protection_market = protection_market
        self.pool = pool
        self.gauge = gauge

    @property
    def lp_token(self):
        return self.chain.contract(self.pool).lp_token

    def _validate_market(self, market):
        require(market in (self.money_market, self.protection_market), "Invalid borrow market")

    def _borrow(self, ctx, market, borrow_amount):
        err = self.chain.call(ctx.address, market, "borrow", borrow_amount)
        require(err == 0, "Borrow failed")

    def _stake(self, ctx):
        lp_balance = self.chain.contract(self.lp_token).balance_of(ctx.address)
        # The gauge refuses empty deposits
        if lp_balance == 0:
            return 0
        ensure_allowance(self.chain, ctx.address, self.lp_token, self.gauge)
        self.chain.call(ctx.address, self.gauge, "deposit", lp_balance)
        return lp_balance

    def _unstake(self, ctx, redeem_amount, min_amount_out):
        self.chain.call(ctx.address, self.gauge, "withdraw", redeem_amount)
        return self.chain.call(ctx.address, self.pool, "remove_liquidity_one_coin", redeem_amount, min_amount_out)

    def _claim_rewards(self, ctx, recipient):
        self.chain.call(ctx.address, self.gauge, "claim_rewards")
        for token in self.chain.contract(self.gauge).reward_tokens():
            balance = self.chain.contract(token).balance_of(ctx.address)
            if balance > 0:
                self.chain.call(ctx.address, token, "transfer", recipient, balance)

    @external
    def claim_rewards(self, ctx, recipient):
        """Claims every reward the gauge owes the caller and sends it to `recipient`."""
        self._claim_rewards(ctx, recipient)


class EtherPoolInvest(InvestAdapter):
    """
    Adapter for native currency markets paired with a native currency pool.
    Debt is repaid through Maximillion, which refunds whatever exceeds the debt.
    """

    def __init__(self, chain, money_market, protection_market, maximillion, pool, gauge):
        super().__init__(chain, money_market, protection_market, pool, gauge)
        self.maximillion = maximillion

    @external
    def invest(self, ctx, market, borrow_amount, min_amount_out):
        """
        Borrows `borrow_amount` from `market` and stakes the resulting LP tokens.

        Raises:
            Revert: "Invalid borrow market", "Borrow failed" or the pool's slippage check
        """
        self._validate_market(market)
        self._borrow(ctx, market, borrow_amount)

        self.chain.call(ctx.address, self.pool, "add_liquidity", borrow_amount, min_amount_out, value=borrow_amount)
        staked = self._stake(ctx)
        logger.debug("%s invested %s borrowed from %s, staked %s", ctx.address, borrow_amount, market, staked)

    @external
    def divest(self, ctx, market, recipient, redeem_amount, min_amount_out):
        """
        Unstakes `redeem_amount` LP tokens, withdraws them to native currency and repays the
        debt in `market` with everything the caller holds. Any currency left after repaying
        goes to `recipient`, along with the claimed rewards.

        Native currency sent along with the call is included in the repayment, which is how
        a caller fully clears a debt the position alone does not cover.
        """
        self._validate_market(market)
        self._unstake(ctx, redeem_amount, min_amount_out)

        balance = self.chain.get_balance(ctx.address)
        self.chain.call(ctx.address, self.maximillion, "repay_behalf_explicit", ctx.address, market, value=balance)

        remaining = self.chain.get_balance(ctx.address)
        if remaining > 0:
            self.chain.transfer_native(ctx.address, recipient, remaining)
        self._claim_rewards(ctx, recipient)


class TokenPoolInvest(InvestAdapter):
    """
    Adapter for token markets paired with a pool of the same token.
    """

    def _underlying(self, market):
        return self.chain.contract(market).underlying()

    @external
    def invest(self, ctx, market, borrow_amount, min_amount_out):
        """Borrows `borrow_amount` from `market` and stakes the resulting LP tokens."""
        self._validate_market(market)
        self._borrow(ctx, market, borrow_amount)

        underlying = self._underlying(market)
        ensure_allowance(self.chain, ctx.address, underlying, self.pool)
        self.chain.call(ctx.address, self.pool, "add_liquidity", borrow_amount, min_amount_out)
        staked = self._stake(ctx)
        logger.debug("%s invested %s borrowed from %s, staked %s", ctx.address, borrow_amount, market, staked)

    @external
    def divest(self, ctx, market, recipient, redeem_amount, min_amount_out):
        """
        Unstakes `redeem_amount` LP tokens, withdraws them and repays as much of the debt in
        `market` as the caller's token balance covers. The rest of the balance and the
        claimed rewards go to `recipient`.
        """
        self._validate_market(market)
        self._unstake(ctx, redeem_amount, min_amount_out)

        underlying = self.chain.contract(self._underlying(market))
        debt = self.chain.call(ctx.address, market, "borrow_balance_current", ctx.address)
        repay_amount = min(underlying.balance_of(ctx.address), debt)
        ensure_allowance(self.chain, ctx.address, underlying.address, market, repay_amount)
        err = self.chain.call(ctx.address, market, "repay_borrow", repay_amount)
        require(err == 0, "Repay failed")

        remaining = underlying.balance_of(ctx.address)
        if remaining > 0:
            self.chain.call(ctx.address, underlying.address, "transfer", recipient, remaining)
        self._claim_rewards(ctx, recipient)
