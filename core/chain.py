"""
Execution Environment Model.

This module simulates the parts of the EVM the protection market contracts rely on.
Contracts are plain Python objects that keep their storage as attributes, just like
the token and market models. The Chain provides what the EVM would:

1. Addresses for deployed contracts and externally owned accounts
2. Native currency balances
3. An event log
4. Call frames that roll back every storage change when they revert
5. Delegate calls, which run a contract's code against another account's identity
   and balances (this is how a proxy wallet executes logic contracts)

A transaction sent through `Chain.transact` is atomic: a revert that escapes the
top-level call restores every contract, every native balance and the event log.
"""

import copy
import inspect
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from model_config import Config
from model_logging import get_logger

logger = get_logger("chain")

# Address used to represent the native currency wherever a token address is expected
ETH_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1


class Revert(Exception):
    """
    Raised when a contract call reverts.

    `reason` is the revert string, or None when the call reverted without one
    (the return data was too short to decode a reason).
    """

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason if reason is not None else "Transaction reverted silently")


class FailureLogError(Exception):
    """Raised when a successful transaction reported an in-protocol failure instead of the expected log."""

    def __init__(self, message: str, codes: Dict[str, Any]):
        super().__init__(message)
        self.codes = codes


def require(condition: bool, reason: Optional[str] = None) -> None:
    """Revert with `reason` unless `condition` holds."""
    if not condition:
        raise Revert(reason)


def external(function):
    """Marks a contract method as callable through the chain. It receives the ExecutionContext first."""
    function.external = True
    return function


def payable(function):
    """Marks an external contract method as able to receive native currency."""
    function.payable = True
    return external(function)


def view(function):
    """Marks a read-only method as callable through the chain. It is called without the ExecutionContext."""
    function.view = True
    return external(function)


@dataclass(frozen=True)
class ExecutionContext:
    """
    The msg/this view a contract method executes under.

    sender is the immediate caller. address is the account whose identity and
    balances the code acts on: the contract itself for a regular call, the
    delegating account for a delegate call. value is the native currency sent
    along with the call.
    """
    sender: str
    address: str
    value: int = 0


@dataclass
class Event:
    address: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Receipt:
    """Result of a transaction that was mined without reverting."""
    return_value: Any
    events: List[Event]
    block_number: int

    def logs(self, name: str, address: Optional[str] = None) -> List[Event]:
        return [e for e in self.events if e.name == name and (address is None or e.address == address)]

    def failures(self) -> List[Event]:
        return self.logs("Failure")

    def find_log(self, name: str, address: Optional[str] = None) -> Event:
        """
        Return the first log named `name` emitted by the transaction.

        A market can signal failure through a Failure log and a nonzero return code
        without reverting, so when the expected log is missing the Failure codes are
        surfaced instead.

        Raises:
            LookupError: If neither the expected log nor a Failure log was emitted
            FailureLogError: If a Failure log was emitted in place of the expected log
        """
        found = self.logs(name, address)
        if found:
            return found[0]

        failures = self.failures()
        if not failures:
            raise LookupError(f"Expected log {name} and Failure logs both not found")
        logger.error("Error codes: %s", failures[0].args)
        raise FailureLogError("Transaction failed, see error codes", failures[0].args)

    def expect_success(self) -> None:
        """Raise if any market reported a failure during the transaction."""
        failures = self.failures()
        if failures:
            raise FailureLogError(f"Transaction emitted {len(failures)} Failure log(s)", failures[0].args)


class Contract:
    """Base class for all contracts deployed on a Chain."""

    def __init__(self, chain: "Chain"):
        self.chain = chain
        self.address = chain.deploy(self)

    def emit(self, name: str, **args) -> None:
        self.chain.emit(self.address, name, **args)


class Chain:
    """
    Simulates the execution environment shared by all contracts.
    """

    def __init__(self, auto_mine: Optional[bool] = None):
        # Deployed contracts by address
        self.contracts: Dict[str, Contract] = {}

        # Native currency balances by address
        self.native_balances: Dict[str, int] = {}

        # Every event emitted so far, in order
        self.events: List[Event] = []

        self.block_number = 0

        # Mine a new block for every transaction, like a local development node
        self.auto_mine = Config.get_chain_params().auto_mine if auto_mine is None else auto_mine

        self._address_count = 0

    # --- Accounts ---

    def _next_address(self) -> str:
        self._address_count += 1
        return "0x" + format(self._address_count, "040x")

    def deploy(self, contract: Contract) -> str:
        address = self._next_address()
        self.contracts[address] = contract
        return address

    def create_account(self, balance: int = 0) -> str:
        """Create an externally owned account, optionally funded with native currency."""
        address = self._next_address()
        if balance:
            self.native_balances[address] = balance
        return address

    def is_contract(self, address: str) -> bool:
        return address in self.contracts

    def contract(self, address: str) -> Contract:
        try:
            return self.contracts[address]
        except KeyError:
            raise Revert(f"No contract deployed at {address}") from None

    # --- Native currency ---

    def get_balance(self, address: str) -> int:
        return self.native_balances.get(address, 0)

    def set_balance(self, address: str, amount: int) -> None:
        """Overwrite the native balance of an account (test fixture helper)."""
        self.native_balances[address] = amount

    def _move_native(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise Revert("Negative value")
        if amount == 0:
            return
        balance = self.get_balance(sender)
        if balance < amount:
            raise Revert("Insufficient native balance")
        self.native_balances[sender] = balance - amount
        self.native_balances[recipient] = self.get_balance(recipient) + amount

    def transfer_native(self, sender: str, recipient: str, amount: int) -> None:
        """
        Send native currency from sender to recipient.

        Contracts only accept plain transfers through a `receive` method.
        """
        if self.is_contract(recipient) and amount > 0:
            self.call(sender, recipient, "receive", value=amount)
            return
        self._move_native(sender, recipient, amount)

    # --- Blocks and events ---

    def mine(self, blocks: int = 1) -> int:
        self.block_number += blocks
        return self.block_number

    def emit(self, address: str, name: str, **args) -> None:
        self.events.append(Event(address, name, dict(args)))

    def events_named(self, name: str, address: Optional[str] = None) -> List[Event]:
        return [e for e in self.events if e.name == name and (address is None or e.address == address)]

    # --- Calls ---

    def _snapshot(self):
        # Contracts keep a reference to the chain, which must not be copied
        storage = {address: vars(contract) for address, contract in self.contracts.items()}
        storage, native_balances = copy.deepcopy((storage, self.native_balances), {id(self): self})
        # The event log is append-only
        return storage, native_balances, len(self.events)

    def _restore(self, snapshot) -> None:
        storage, native_balances, event_count = snapshot
        for address in list(self.contracts):
            if address not in storage:
                del self.contracts[address]
        for address, attributes in storage.items():
            contract = self.contracts[address]
            contract.__dict__.clear()
            contract.__dict__.update(attributes)
        self.native_balances = native_balances
        del self.events[event_count:]

    @contextmanager
    def _frame(self):
        snapshot = self._snapshot()
        try:
            yield
        except Exception:
            self._restore(snapshot)
            raise

    @staticmethod
    def _resolve(contract: Contract, function: str):
        method = getattr(contract, function, None)
        if method is None or not getattr(method, "external", False):
            raise Revert(f"{type(contract).__name__} has no external function {function}")
        return method

    @staticmethod
    def _bind(method, function: str, ctx: ExecutionContext, args: Tuple) -> Tuple:
        call_args = args if getattr(method, "view", False) else (ctx,) + args
        try:
            inspect.signature(method).bind(*call_args)
        except TypeError as exc:
            # Arguments that do not decode revert without a reason
            logger.debug("Bad arguments for %s: %s", function, exc)
            raise Revert() from None
        return call_args

    def call(self, sender: str, target: str, function: str, *args, value: int = 0) -> Any:
        """
        Call `function` on the contract at `target` as `sender`, forwarding `value`.

        Runs in its own frame: if the call reverts, all of its effects are undone
        before the Revert propagates to the caller. A call to an externally owned
        account succeeds whatever the function and only moves `value`.
        """
        if not self.is_contract(target):
            self._move_native(sender, target, value)
            return None

        method = self._resolve(self.contract(target), function)
        if value and not getattr(method, "payable", False):
            raise Revert(f"{function} is not payable")

        ctx = ExecutionContext(sender=sender, address=target, value=value)
        call_args = self._bind(method, function, ctx, args)
        with self._frame():
            self._move_native(sender, target, value)
            return method(*call_args)

    def delegate_call(self, ctx: ExecutionContext, target: str, function: str, *args) -> Any:
        """
        Run `function` from the contract at `target` in the caller's context.

        The callee sees the same sender and value as the caller and acts on the
        caller's address, so every balance it reads or moves belongs to the caller.
        """
        method = self._resolve(self.contract(target), function)
        call_args = self._bind(method, function, ctx, args)
        with self._frame():
            return method(*call_args)

    def try_call(self, sender: str, target: str, function: str, *args, value: int = 0) -> Tuple[bool, Any]:
        """
        Low-level call: return (success, return data) instead of propagating a revert.

        On failure the return data is the Revert itself.
        """
        try:
            return True, self.call(sender, target, function, *args, value=value)
        except Revert as exc:
            return False, exc

    def transact(self, sender: str, target: str, function: str, *args, value: int = 0) -> Receipt:
        """
        Send a transaction from an externally owned account.

        Returns:
            Receipt with the call's return value and the events it emitted

        Raises:
            Revert: If the transaction reverted; no state change persists
        """
        if self.is_contract(sender):
            raise ValueError(f"Transactions must originate from an externally owned account, got {sender}")
        if self.auto_mine:
            self.block_number += 1

        first_event = len(self.events)
        logger.debug("Block %s: %s -> %s.%s%s value=%s", self.block_number, sender, target, function, args, value)
        try:
            result = self.call(sender, target, function, *args, value=value)
        except Revert as exc:
            logger.debug("Block %s: reverted with %s", self.block_number, exc)
            raise
        return Receipt(result, self.events[first_event:], self.block_number)
