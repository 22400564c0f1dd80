"""
ERC20 Token Model.

This module simulates a standard fungible token. It is used for market underlyings
(e.g. USDC), venue receipt tokens (LP tokens) and reward tokens.
"""

from chain import Contract, MAX_UINT256, Revert, external, require, view


class ERC20Token(Contract):
    """
    Simulates an ERC20 token contract.
    """

    def __init__(self, chain, name, symbol, decimals=18, strict_approval=False):
        super().__init__(chain)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals

        # Total token supply
        self.total_supply = 0

        # Mapping of addresses to token balances
        self.balances = {}

        # Mapping of owner -> spender -> remaining allowance
        self.allowances = {}

        # Addresses allowed to mint and burn
        self.minters = set()

        # Some tokens (USDT) refuse to change a nonzero allowance to another nonzero value
        self.strict_approval = strict_approval

    def add_minter(self, minter):
        """Allow `minter` to mint and burn tokens."""
        self.minters.add(minter)

    @view
    def balance_of(self, account):
        """Returns the token balance of the given account."""
        return self.balances.get(account, 0)

    @view
    def allowance(self, owner, spender):
        """Returns how much `spender` may still move on behalf of `owner`."""
        return self.allowances.get(owner, {}).get(spender, 0)

    def set_balance(self, account, amount):
        """
        Overwrite the balance of an account, adjusting total supply.
        Test fixture helper, the equivalent of writing the balance storage slot.
        """
        self.total_supply += amount - self.balance_of(account)
        self.balances[account] = amount

    def _transfer(self, sender, recipient, amount):
        require(amount >= 0, "ERC20: invalid amount")
        sender_balance = self.balances.get(sender, 0)
        require(sender_balance >= amount, "ERC20: transfer amount exceeds balance")

        self.balances[sender] = sender_balance - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.emit("Transfer", src=sender, dst=recipient, amount=amount)

    @external
    def transfer(self, ctx, recipient, amount):
        """
        Transfers tokens from the caller to recipient.

        Args:
            ctx: Execution context of the call
            recipient: Address receiving the tokens
            amount: Amount of tokens to transfer

        Returns:
            True if successful
        """
        self._transfer(ctx.sender, recipient, amount)
        return True

    @external
    def approve(self, ctx, spender, amount):
        """
        Sets the allowance of `spender` over the caller's tokens to `amount`.
        """
        require(amount >= 0, "ERC20: invalid amount")
        if self.strict_approval and amount != 0 and self.allowance(ctx.sender, spender) != 0:
            raise Revert(None)

        self.allowances.setdefault(ctx.sender, {})[spender] = amount
        self.emit("Approval", owner=ctx.sender, spender=spender, amount=amount)
        return True

    @external
    def transfer_from(self, ctx, sender, recipient, amount):
        """
        Moves tokens from `sender` to `recipient` using the caller's allowance.
        An allowance of MAX_UINT256 is never decreased.
        """
        current = self.allowance(sender, ctx.sender)
        require(current >= amount, "ERC20: transfer amount exceeds allowance")
        if current != MAX_UINT256:
            self.allowances[sender][ctx.sender] = current - amount

        self._transfer(sender, recipient, amount)
        return True

    @external
    def mint(self, ctx, recipient, amount):
        """
        Mints new tokens to the recipient account.
        Only callable by authorized minters.
        """
        require(ctx.sender in self.minters, "ERC20: caller is not a minter")
        require(amount >= 0, "ERC20: invalid amount")

        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        self.total_supply += amount
        self.emit("Transfer", src=None, dst=recipient, amount=amount)
        return True

    @external
    def burn(self, ctx, account, amount):
        """
        Burns tokens from the given account.
        Only callable by authorized minters.
        """
        require(ctx.sender in self.minters, "ERC20: caller is not a minter")
        balance = self.balances.get(account, 0)
        require(balance >= amount, "ERC20: burn amount exceeds balance")

        self.balances[account] = balance - amount
        self.total_supply -= amount
        self.emit("Transfer", src=account, dst=None, amount=amount)
        return True


def ensure_allowance(chain, owner, token, spender, amount=MAX_UINT256):
    """
    Makes sure `spender` may move at least `amount` of `owner`'s tokens, approving an
    unlimited allowance only when the current one is insufficient.

    A nonzero allowance is reset to zero before it is raised, since some tokens refuse
    to change one nonzero allowance into another.
    """
    current = chain.contract(token).allowance(owner, spender)
    if current >= amount:
        return
    if current != 0:
        chain.call(owner, token, "approve", spender, 0)
    chain.call(owner, token, "approve", spender, MAX_UINT256)
