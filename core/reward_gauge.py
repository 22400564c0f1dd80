"""
Reward Gauge Model.

This module simulates a reward-bearing staking vault. LP tokens staked in the gauge
earn one or more reward tokens at a fixed rate per block, shared pro rata between
stakers. The staked balance (`balance_of`) is the only record of a staker's position.
"""

from dataclasses import dataclass

from chain import Contract, external, require
from model_config import MANTISSA, Config


@dataclass
class RewardState:
    """Emission schedule and accumulator of one reward token."""
    rate_per_block: int
    reward_per_token_stored: int = 0
    last_update_block: int = 0


class RewardGauge(Contract):
    """
    Simulates a liquidity gauge paying rewards to LP token stakers.
    """

    def __init__(self, chain, staking_token):
        super().__init__(chain)
        self.staking_token = staking_token

        # Staked balances
        self.total_supply = 0
        self.balances = {}

        # reward token -> RewardState, in the order rewards were added
        self.rewards = {}

        # reward token -> account -> reward per token already accounted for
        self.user_reward_per_token_paid = {}

        # reward token -> account -> rewards earned but not claimed
        self.pending_rewards = {}

    def add_reward(self, token, rate_per_block=None):
        """
        Starts emitting `token`. The gauge must be a minter of the token. Admin operation.
        """
        if rate_per_block is None:
            rate_per_block = Config.get_venue_params().reward_rate_per_block
        self.rewards[token] = RewardState(rate_per_block, 0, self.chain.block_number)
        self.user_reward_per_token_paid[token] = {}
        self.pending_rewards[token] = {}

    def reward_tokens(self):
        return list(self.rewards)

    def balance_of(self, account):
        return self.balances.get(account, 0)

    def _reward_per_token(self, token):
        state = self.rewards[token]
        if self.total_supply == 0:
            return state.reward_per_token_stored
        blocks = self.chain.block_number - state.last_update_block
        return state.reward_per_token_stored + blocks * state.rate_per_block * MANTISSA // self.total_supply

    def _earned(self, account, token, reward_per_token):
        paid = self.user_reward_per_token_paid[token].get(account, 0)
        pending = self.pending_rewards[token].get(account, 0)
        return self.balance_of(account) * (reward_per_token - paid) // MANTISSA + pending

    def earned(self, account, token=None):
        """Returns the unclaimed rewards of `account` in `token` (the first reward token by default)."""
        if token is None:
            token = self.reward_tokens()[0]
        return self._earned(account, token, self._reward_per_token(token))

    def _update_reward(self, account):
        for token, state in self.rewards.items():
            reward_per_token = self._reward_per_token(token)
            state.reward_per_token_stored = reward_per_token
            state.last_update_block = self.chain.block_number
            self.pending_rewards[token][account] = self._earned(account, token, reward_per_token)
            self.user_reward_per_token_paid[token][account] = reward_per_token

    @external
    def deposit(self, ctx, amount):
        """Stakes `amount` of the caller's LP tokens."""
        require(amount > 0, "Cannot stake 0")
        self._update_reward(ctx.sender)
        self.chain.call(self.address, self.staking_token, "transfer_from", ctx.sender, self.address, amount)
        self.balances[ctx.sender] = self.balance_of(ctx.sender) + amount
        self.total_supply += amount
        self.emit("Deposit", provider=ctx.sender, value=amount)

    @external
    def withdraw(self, ctx, amount):
        """Unstakes `amount` LP tokens back to the caller."""
        require(amount > 0, "Cannot withdraw 0")
        require(self.balance_of(ctx.sender) >= amount, "withdraw amount exceeds balance")
        self._update_reward(ctx.sender)
        self.balances[ctx.sender] -= amount
        self.total_supply -= amount
        self.chain.call(self.address, self.staking_token, "transfer", ctx.sender, amount)
        self.emit("Withdraw", provider=ctx.sender, value=amount)

    @external
    def claim_rewards(self, ctx):
        """
        Pays every pending reward of the caller to the caller.

        Returns:
            Dict of reward token -> amount paid
        """
        self._update_reward(ctx.sender)
        paid = {}
        for token in self.rewards:
            amount = self.pending_rewards[token].get(ctx.sender, 0)
            if amount == 0:
                continue
            self.pending_rewards[token][ctx.sender] = 0
            self.chain.call(self.address, token, "mint", ctx.sender, amount)
            self.emit("RewardPaid", user=ctx.sender, reward_token=token, amount=amount)
            paid[token] = amount
        return paid
