"""
Trigger Model.

A trigger reports whether the protected condition (a hack, an invariant violation,
a depeg) has occurred for the platforms it covers. Protection markets consult their
trigger before every state-changing operation; once it fires, the market halts and
its borrowers' debt is forgiven.

The trigger is a one-way switch. `is_triggered` moves from False to True at most
once and never back, and `check_and_toggle_trigger` is the only way to move it.
Anyone can call that method, any number of times, so it short-circuits as soon as
the trigger has fired.
"""

from abc import ABC, abstractmethod
from typing import List

from chain import Contract, external, view
from model_logging import get_logger

logger = get_logger("trigger")


class Trigger(Contract, ABC):
    """
    Interface every trigger honors.

    Subclasses only decide whether the condition currently holds by implementing
    `check_trigger_condition`. The state transition itself, the short-circuit and
    the activation event live here.
    """

    def __init__(self, chain, name: str, symbol: str, description: str, platform_ids: List[int], recipient: str):
        super().__init__(chain)
        self.name = name
        self.symbol = symbol
        self.description = description
        self.platform_ids = list(platform_ids)

        # Receives subsidies from protection markets using this trigger
        self.recipient = recipient

        self.is_triggered = False

    @view
    def get_platform_ids(self) -> List[int]:
        """Returns the IDs of the platforms covered by this trigger."""
        return list(self.platform_ids)

    @abstractmethod
    def check_trigger_condition(self) -> bool:
        """Returns True if the protected condition has occurred. Must not modify state."""

    @external
    def check_and_toggle_trigger(self, ctx) -> bool:
        """
        Checks the trigger condition and toggles the trigger if it has been met.

        Returns:
            True if the trigger is (now) toggled, False otherwise
        """
        if self.is_triggered:
            return True

        if not self.check_trigger_condition():
            return False

        self.is_triggered = True
        self.emit("TriggerActivated")
        logger.info("Trigger %s (%s) activated by %s", self.name, self.address, ctx.sender)
        return True


class MockTrigger(Trigger):
    """
    A trigger whose condition is a flag anyone can set. Used for testing.
    """

    def __init__(self, chain, name, symbol, description, platform_ids, recipient, should_toggle=False):
        super().__init__(chain, name, symbol, description, platform_ids, recipient)
        self.should_toggle = should_toggle

    @external
    def set_should_toggle(self, ctx, should_toggle):
        self.should_toggle = should_toggle

    def check_trigger_condition(self):
        return self.should_toggle


class SharePriceTrigger(Trigger):
    """
    Fires when a liquidity pool's virtual price drops below its value at deployment.

    The virtual price of a healthy pool only goes up as fees accrue, so a drop
    beyond `tolerance_bps` means the pool has lost funds.
    """

    def __init__(self, chain, name, symbol, description, platform_ids, recipient, pool, tolerance_bps=50):
        super().__init__(chain, name, symbol, description, platform_ids, recipient)
        self.pool = pool
        self.tolerance_bps = tolerance_bps
        self.initial_virtual_price = chain.contract(pool).get_virtual_price()

    def check_trigger_condition(self):
        floor = self.initial_virtual_price * (10_000 - self.tolerance_bps) // 10_000
        return self.chain.contract(self.pool).get_virtual_price() < floor
