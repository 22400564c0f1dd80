"""
Multicall Model.

This module simulates the batching contract used to compose borrow, invest and repay
steps into a single atomic transaction from a user's proxy wallet.

The proxy delegate-calls `batch_calls`, so every call in the batch is made by the
proxy and acts on the proxy's balances. Each call carries its own failure policy:

- require_success=True: the step is mandatory. If it fails, the whole batch reverts
  with the call's revert reason.
- require_success=False: the step is optional (e.g. claiming rewards). If it fails,
  its effects are undone, a CallFailed event tagged with its index is emitted and the
  batch moves on.

A call in SELF_CONTEXT mode runs one of this contract's helpers, still in the proxy's
context. Helpers read balances at execution time, so a batch can move "everything the
proxy now holds" without knowing the amounts when it is encoded.

The batch executes arbitrary calls as whoever delegates into it. It is only meant to be
reached through a wallet its owner controls, and refuses to run in its own context.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from chain import Contract, ETH_ADDRESS, MAX_UINT256, Revert, external, require
from erc20_token import ensure_allowance
from model_logging import get_logger

logger = get_logger("multicall")


class CallMode(Enum):
    """How a Call is dispatched."""
    EXTERNAL = 0      # Regular call to `target`
    SELF_CONTEXT = 1  # Run a Multicall helper in the calling proxy's context


@dataclass(frozen=True)
class Call:
    """A single step of a batch."""
    target: Optional[str]
    function: str
    args: Tuple = ()
    value: int = 0
    require_success: bool = True
    mode: CallMode = CallMode.EXTERNAL

    @classmethod
    def external(cls, target, function, *args, value=0, require_success=True):
        return cls(target, function, tuple(args), value, require_success, CallMode.EXTERNAL)

    @classmethod
    def self_context(cls, function, *args, value=0, require_success=True):
        return cls(None, function, tuple(args), value, require_success, CallMode.SELF_CONTEXT)


class BatchCallFailed(Revert):
    """A mandatory call of a batch failed. The revert reason of the call is kept verbatim."""

    def __init__(self, index: int, reason: Optional[str]):
        super().__init__(reason)
        self.index = index


class RepayFailed(Revert):
    """Neither repaying the whole debt nor repaying the available balance succeeded."""


class Multicall(Contract):
    """
    Simulates the batched multicall contract.
    """

    SILENT_REVERT_MESSAGE = "Multicall: call reverted silently"

    # Functions a SELF_CONTEXT call may run
    SELF_CONTEXT_HELPERS = ("transfer_all", "repay_borrow_cozy_token", "repay_borrow_cozy_ether")

    def _only_delegated(self, ctx):
        require(ctx.address != self.address, "Multicall: only callable through delegation")

    def _dispatch(self, ctx, call: Call) -> Tuple[bool, Any]:
        if call.mode is CallMode.SELF_CONTEXT:
            # Runs against the proxy's storage, nothing can be forwarded
            require(call.value == 0, "Multicall: value must be zero for self-context calls")
            require(call.function in self.SELF_CONTEXT_HELPERS, f"Multicall: unknown helper {call.function}")
            try:
                return True, self.chain.delegate_call(ctx, self.address, call.function, *call.args)
            except Revert as exc:
                return False, exc
        return self.chain.try_call(ctx.address, call.target, call.function, *call.args, value=call.value)

    @external
    def batch_calls(self, ctx, calls: List[Call]) -> List[Any]:
        """
        Executes `calls` in order.

        Returns:
            One return payload per call, in call order. The payload of a failed
            optional call is its Revert.

        Raises:
            BatchCallFailed: If a call with require_success failed
            Revert: If a self-context call carries value
        """
        self._only_delegated(ctx)

        results = []
        for index, call in enumerate(calls):
            success, return_data = self._dispatch(ctx, call)
            if not success:
                reason = return_data.reason if return_data.reason is not None else self.SILENT_REVERT_MESSAGE
                if call.require_success:
                    raise BatchCallFailed(index, reason)
                self.chain.emit(ctx.address, "CallFailed", index=index, return_data=return_data)
                logger.warning("Optional call %s (%s) failed: %s", index, call.function, reason)
            results.append(return_data)
        return results

    # --- Self-context helpers ---

    @external
    def transfer_all(self, ctx, token, to):
        """Sends the caller's entire balance of `token` (or native currency) to `to`."""
        self._only_delegated(ctx)
        if token == ETH_ADDRESS:
            self.chain.transfer_native(ctx.address, to, self.chain.get_balance(ctx.address))
        else:
            balance = self.chain.contract(token).balance_of(ctx.address)
            self.chain.call(ctx.address, token, "transfer", to, balance)

    @external
    def repay_borrow_cozy_token(self, ctx, market):
        """
        Repays the caller's debt in a token market.

        Tries to repay everything first. Interest accrued since the batch was built can
        make that revert (the caller holds slightly less than it owes), in which case the
        available balance is repaid instead.

        Raises:
            RepayFailed: If the fallback repayment reverts or returns an error code
        """
        self._only_delegated(ctx)
        underlying = self.chain.contract(market).underlying()
        ensure_allowance(self.chain, ctx.address, underlying, market)

        success, result = self.chain.try_call(ctx.address, market, "repay_borrow", MAX_UINT256)
        if not success:
            logger.debug("Full repayment in %s reverted (%s), repaying available balance", market, result)
            debt = self.chain.call(ctx.address, market, "borrow_balance_current", ctx.address)
            balance = self.chain.contract(underlying).balance_of(ctx.address)
            try:
                result = self.chain.call(ctx.address, market, "repay_borrow", min(balance, debt))
            except Revert as exc:
                raise RepayFailed(f"Repay failed: {exc}") from exc

        if result != 0:
            raise RepayFailed(f"Repay failed with error code {int(result)}")

    @external
    def repay_borrow_cozy_ether(self, ctx, market, maximillion):
        """Sends the caller's whole native balance to `maximillion`, which repays and refunds the excess."""
        self._only_delegated(ctx)
        balance = self.chain.get_balance(ctx.address)
        self.chain.call(ctx.address, maximillion, "repay_behalf_explicit", ctx.address, market, value=balance)
