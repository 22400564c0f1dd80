"""
Maximillion Model.

Repaying a native currency debt exactly is impractical: the amount owed grows every
block, and a native market reverts when sent more than is owed. Maximillion takes any
amount of native currency, repays as much of the borrower's debt as it covers, and
refunds the excess to the caller.
"""

from chain import Contract, payable


class Maximillion(Contract):
    """
    Simulates the Maximillion repayment helper for native currency markets.
    """

    def __init__(self, chain, default_market):
        super().__init__(chain)
        self.default_market = default_market

    @payable
    def repay_behalf(self, ctx, borrower):
        """Repays `borrower`'s debt in the default market."""
        self._repay(ctx, borrower, self.default_market)

    @payable
    def repay_behalf_explicit(self, ctx, borrower, market):
        """Repays `borrower`'s debt in `market`, refunding any excess to the caller."""
        self._repay(ctx, borrower, market)

    def _repay(self, ctx, borrower, market):
        received = ctx.value
        borrows = self.chain.call(self.address, market, "borrow_balance_current", borrower)
        if received > borrows:
            self.chain.call(self.address, market, "repay_borrow_behalf", borrower, value=borrows)
            self.chain.transfer_native(self.address, ctx.sender, received - borrows)
        else:
            self.chain.call(self.address, market, "repay_borrow_behalf", borrower, value=received)
