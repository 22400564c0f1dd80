"""
Proxy Wallet Model.

A user's smart contract account. The owner sends it a logic contract and a function,
and the proxy runs that function with delegation: the logic acts with the proxy's
identity and on the proxy's balances. Positions opened through the invest adapters
are therefore held by the proxy, not by the owner's externally owned account.
"""

from chain import Contract, payable, require


class ProxyWallet(Contract):
    """
    Simulates an owner-controlled proxy that delegates to logic contracts.
    """

    def __init__(self, chain, owner):
        super().__init__(chain)
        self.owner = owner

    @payable
    def execute(self, ctx, target, function, *args):
        """
        Runs `function` of the contract at `target` in the proxy's context.
        Value sent with the call is credited to the proxy before the logic runs.
        """
        require(ctx.sender == self.owner, "ProxyWallet: caller is not the owner")
        return self.chain.delegate_call(ctx, target, function, *args)

    @payable
    def receive(self, ctx):
        """Accepts plain native currency transfers."""
