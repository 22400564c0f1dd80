"""
Cozy Market Model.

This module simulates the lending markets of the protocol. A market lends one
underlying asset (an ERC20 token or the native currency) against collateral checked by
the Comptroller.

A market may reference a Trigger:
- A market without a trigger is a money market.
- A market with a trigger is a protection market. Before every state-changing operation
  it asks the trigger whether the protected condition occurred. The first time the
  trigger answers True the market records its own one-way `is_triggered` flag, forgives
  all outstanding debt and stops lending.

Markets follow the error code convention of the lending protocol they are built on:
most failures do not revert. They emit a Failure event and return a nonzero error code,
and it is up to the caller to check it.

Interest is a simple per-block borrow index; the full interest rate model of the
underlying protocol is out of scope.
"""

from dataclasses import dataclass
from enum import IntEnum

from chain import Contract, MAX_UINT256, external, payable, require
from model_config import MANTISSA, Config
from model_logging import get_logger

logger = get_logger("cozy_market")


class Error(IntEnum):
    """Error codes returned by market operations."""
    NO_ERROR = 0
    UNAUTHORIZED = 1
    BAD_INPUT = 2
    COMPTROLLER_REJECTION = 3  # Comptroller code is reported as the failure detail
    TOKEN_INSUFFICIENT_BALANCE = 13
    TOKEN_INSUFFICIENT_CASH = 14
    MARKET_TRIGGERED = 17      # Protection market has been triggered


class FailureInfo(IntEnum):
    """Identifies which check failed, reported alongside the error code."""
    BORROW_CASH_NOT_AVAILABLE = 0
    BORROW_COMPTROLLER_REJECTION = 1
    BORROW_MARKET_TRIGGERED = 2
    MINT_MARKET_TRIGGERED = 3
    REDEEM_COMPTROLLER_REJECTION = 4
    REDEEM_INSUFFICIENT_BALANCE = 5
    REDEEM_TRANSFER_OUT_NOT_POSSIBLE = 6


@dataclass
class BorrowSnapshot:
    """Borrow balance of an account, as of the borrow index it was last updated at."""
    principal: int
    interest_index: int


class CozyMarket(Contract):
    """
    Logic shared by token and native currency markets.

    Supplied funds are tracked in shares. Until the market is triggered one share is
    worth one unit of underlying; afterwards suppliers split whatever cash is left.
    """

    def __init__(self, chain, comptroller, underlying, name, symbol, trigger=None, borrow_rate_per_block=None):
        super().__init__(chain)
        self.name = name
        self.symbol = symbol
        self.comptroller = comptroller
        self.underlying_address = underlying

        # Address of the trigger, None for a money market
        self.trigger = trigger

        # Set once, the first time the trigger reports it has fired
        self.is_triggered = False

        if borrow_rate_per_block is None:
            borrow_rate_per_block = Config.get_market_params().borrow_rate_per_block
        self.borrow_rate_per_block = borrow_rate_per_block

        # Interest accounting
        self.borrow_index = MANTISSA
        self.accrual_block_number = chain.block_number
        self.total_borrows = 0

        # Supply accounting, in shares
        self.total_supply = 0
        self.account_supplies = {}

        # account -> BorrowSnapshot
        self.account_borrows = {}

    def underlying(self):
        return self.underlying_address

    def get_cash(self):
        """Returns the amount of underlying held by the market."""
        raise NotImplementedError

    def _do_transfer_in(self, sender, amount):
        raise NotImplementedError

    def _do_transfer_out(self, recipient, amount):
        raise NotImplementedError

    # --- Views ---

    def supply_balance(self, account):
        """Returns the amount of underlying the account could redeem."""
        shares = self.account_supplies.get(account, 0)
        if self.is_triggered and self.total_supply > 0:
            return shares * self.get_cash() // self.total_supply
        return shares

    def borrow_balance_stored(self, account):
        """Returns the account's debt as of the last interest accrual."""
        if self.is_triggered:
            return 0
        snapshot = self.account_borrows.get(account)
        if snapshot is None or snapshot.principal == 0:
            return 0
        return snapshot.principal * self.borrow_index // snapshot.interest_index

    # --- Internal accounting ---

    def _fail(self, err, info, detail=0):
        self.emit("Failure", error=int(err), info=int(info), detail=detail)
        logger.debug("%s failure: error=%s info=%s detail=%s", self.symbol, err.name, info.name, detail)
        return err

    def _check_trigger(self):
        if self.trigger is None or self.is_triggered:
            return
        if self.chain.call(self.address, self.trigger, "check_and_toggle_trigger"):
            self.is_triggered = True
            self.total_borrows = 0
            self.emit("TriggerSet", is_triggered=True)
            logger.warning("Protection market %s triggered, outstanding debt forgiven", self.symbol)

    def _accrue_interest(self):
        self._check_trigger()

        current_block = self.chain.block_number
        blocks = current_block - self.accrual_block_number
        if blocks == 0:
            return
        self.accrual_block_number = current_block
        if self.is_triggered:
            return

        simple_interest_factor = self.borrow_rate_per_block * blocks
        interest_accumulated = simple_interest_factor * self.total_borrows // MANTISSA
        self.total_borrows += interest_accumulated
        self.borrow_index += simple_interest_factor * self.borrow_index // MANTISSA
        self.emit("AccrueInterest", interest_accumulated=interest_accumulated,
                  borrow_index=self.borrow_index, total_borrows=self.total_borrows)

    def _shares_for(self, amount):
        if not self.is_triggered or self.total_supply == 0:
            return amount
        cash = self.get_cash()
        require(cash > 0, "redeem: no cash left")
        return -(-amount * self.total_supply // cash)

    def _mint_fresh(self, minter, amount):
        if self.is_triggered:
            return self._fail(Error.MARKET_TRIGGERED, FailureInfo.MINT_MARKET_TRIGGERED)

        actual_amount = self._do_transfer_in(minter, amount)
        self.account_supplies[minter] = self.account_supplies.get(minter, 0) + actual_amount
        self.total_supply += actual_amount
        self.emit("Mint", minter=minter, mint_amount=actual_amount)
        return Error.NO_ERROR

    def _redeem_fresh(self, redeemer, amount):
        shares = self._shares_for(amount)
        if shares > self.account_supplies.get(redeemer, 0):
            return self._fail(Error.TOKEN_INSUFFICIENT_BALANCE, FailureInfo.REDEEM_INSUFFICIENT_BALANCE)

        allowed = self.chain.call(self.address, self.comptroller, "redeem_allowed", self.address, redeemer, amount)
        if allowed != 0:
            return self._fail(Error.COMPTROLLER_REJECTION, FailureInfo.REDEEM_COMPTROLLER_REJECTION, allowed)

        if self.get_cash() < amount:
            return self._fail(Error.TOKEN_INSUFFICIENT_CASH, FailureInfo.REDEEM_TRANSFER_OUT_NOT_POSSIBLE)

        self.account_supplies[redeemer] -= shares
        self.total_supply -= shares
        self._do_transfer_out(redeemer, amount)
        self.emit("Redeem", redeemer=redeemer, redeem_amount=amount)
        return Error.NO_ERROR

    def _borrow_fresh(self, borrower, amount):
        if self.is_triggered:
            return self._fail(Error.MARKET_TRIGGERED, FailureInfo.BORROW_MARKET_TRIGGERED)

        allowed = self.chain.call(self.address, self.comptroller, "borrow_allowed", self.address, borrower, amount)
        if allowed != 0:
            return self._fail(Error.COMPTROLLER_REJECTION, FailureInfo.BORROW_COMPTROLLER_REJECTION, allowed)

        if self.get_cash() < amount:
            return self._fail(Error.TOKEN_INSUFFICIENT_CASH, FailureInfo.BORROW_CASH_NOT_AVAILABLE)

        account_borrows = self.borrow_balance_stored(borrower) + amount
        self.account_borrows[borrower] = BorrowSnapshot(account_borrows, self.borrow_index)
        self.total_borrows += amount

        self._do_transfer_out(borrower, amount)
        self.emit("Borrow", borrower=borrower, borrow_amount=amount,
                  account_borrows=account_borrows, total_borrows=self.total_borrows)
        return Error.NO_ERROR

    def _repay_borrow_fresh(self, payer, borrower, amount):
        """
        Repays `amount` of the borrower's debt, or all of it for MAX_UINT256.

        Repaying more than is owed reverts, which is why callers that want to clear a
        debt pass MAX_UINT256 instead of an amount computed ahead of time.
        """
        account_borrows = self.borrow_balance_stored(borrower)
        repay_amount = account_borrows if amount == MAX_UINT256 else amount
        require(repay_amount <= account_borrows, "REPAY_BORROW_NEW_ACCOUNT_BORROW_BALANCE_CALCULATION_FAILED")

        actual_amount = self._do_transfer_in(payer, repay_amount)
        new_account_borrows = account_borrows - actual_amount
        self.account_borrows[borrower] = BorrowSnapshot(new_account_borrows, self.borrow_index)
        self.total_borrows = max(self.total_borrows - actual_amount, 0)

        self.emit("RepayBorrow", payer=payer, borrower=borrower, repay_amount=actual_amount,
                  account_borrows=new_account_borrows, total_borrows=self.total_borrows)
        return Error.NO_ERROR

    # --- External ---

    @external
    def accrue_interest(self, ctx):
        """Brings interest (and the trigger state) up to date."""
        self._accrue_interest()
        return Error.NO_ERROR

    @external
    def borrow_balance_current(self, ctx, account):
        """Accrues interest, then returns the account's debt."""
        self._accrue_interest()
        return self.borrow_balance_stored(account)

    @external
    def borrow(self, ctx, borrow_amount):
        """
        Borrows underlying to the caller.

        Returns:
            Error.NO_ERROR on success, otherwise a failure code (no revert)
        """
        self._accrue_interest()
        return self._borrow_fresh(ctx.sender, borrow_amount)

    @external
    def redeem_underlying(self, ctx, redeem_amount):
        """Withdraws supplied underlying. Returns an error code."""
        self._accrue_interest()
        return self._redeem_fresh(ctx.sender, redeem_amount)


class CozyToken(CozyMarket):
    """
    Market for an ERC20 underlying.
    """

    def get_cash(self):
        return self.chain.contract(self.underlying_address).balance_of(self.address)

    def _do_transfer_in(self, sender, amount):
        self.chain.call(self.address, self.underlying_address, "transfer_from", sender, self.address, amount)
        return amount

    def _do_transfer_out(self, recipient, amount):
        self.chain.call(self.address, self.underlying_address, "transfer", recipient, amount)

    @external
    def mint(self, ctx, mint_amount):
        """Supplies underlying from the caller. Returns an error code."""
        self._accrue_interest()
        return self._mint_fresh(ctx.sender, mint_amount)

    @external
    def repay_borrow(self, ctx, repay_amount):
        """Repays the caller's own debt. Returns an error code."""
        self._accrue_interest()
        return self._repay_borrow_fresh(ctx.sender, ctx.sender, repay_amount)

    @external
    def repay_borrow_behalf(self, ctx, borrower, repay_amount):
        """Repays `borrower`'s debt with the caller's tokens. Returns an error code."""
        self._accrue_interest()
        return self._repay_borrow_fresh(ctx.sender, borrower, repay_amount)


class CozyEther(CozyMarket):
    """
    Market for the native currency. Amounts supplied or repaid are the value sent with
    the call, and failures revert instead of returning a code.
    """

    def get_cash(self):
        return self.chain.get_balance(self.address)

    def _do_transfer_in(self, sender, amount):
        # Value was moved by the call itself
        return amount

    def _do_transfer_out(self, recipient, amount):
        self.chain.transfer_native(self.address, recipient, amount)

    @staticmethod
    def _require_no_error(err, message):
        require(err == Error.NO_ERROR, f"{message} ({int(err)})")

    @payable
    def mint(self, ctx):
        self._accrue_interest()
        self._require_no_error(self._mint_fresh(ctx.sender, ctx.value), "mint failed")

    @payable
    def repay_borrow(self, ctx):
        self._accrue_interest()
        self._require_no_error(self._repay_borrow_fresh(ctx.sender, ctx.sender, ctx.value), "repayBorrow failed")

    @payable
    def repay_borrow_behalf(self, ctx, borrower):
        self._accrue_interest()
        self._require_no_error(self._repay_borrow_fresh(ctx.sender, borrower, ctx.value), "repayBorrowBehalf failed")
