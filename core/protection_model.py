"""
Protection Market Model.

This main module deploys every component on a Chain to create a complete model of the
protection market system: money and protection markets for the native currency and a
stablecoin, a liquidity pool and reward gauge for each, the invest adapters, the
multicall executor and Maximillion. It can be used to open user accounts, invest and
divest through their proxy wallets, and simulate what happens to leveraged positions
when the protected venue is exploited.
"""

from dataclasses import dataclass

import numpy as np
import matplotlib.pyplot as plt

from chain import Chain, ETH_ADDRESS
from comptroller import Comptroller
from cozy_market import CozyEther, CozyToken
from erc20_token import ERC20Token
from invest_adapter import EtherPoolInvest, TokenPoolInvest
from liquidity_pool import LiquidityPool
from maximillion import Maximillion
from model_config import MANTISSA
from model_logging import get_logger
from multicall import Multicall
from proxy_wallet import ProxyWallet
from reward_gauge import RewardGauge
from trigger import MockTrigger, SharePriceTrigger

logger = get_logger("protection_model")


@dataclass
class Account:
    """A user: the externally owned account and the proxy wallet it controls."""
    owner: str
    proxy: str


class ProtectionProtocolModel:
    """
    Complete model of the protection market system.
    Deploys and links all components and provides simulation capabilities.
    """

    def __init__(self, eth_price_in_usd=2000, market_liquidity=1_000 * MANTISSA, chain=None):
        self.chain = chain or Chain()
        chain = self.chain

        # Supplies the markets and runs admin operations
        self.deployer = chain.create_account(balance=1_000_000 * MANTISSA)

        # Tokens
        self.usdc = ERC20Token(chain, "USD Coin", "USDC", strict_approval=True)
        self.crv = ERC20Token(chain, "Curve DAO Token", "CRV")
        self.cvx = ERC20Token(chain, "Convex Token", "CVX")

        # Venues
        self.eth_pool = LiquidityPool(chain, ETH_ADDRESS, "Curve ETH LP", "ethCRV")
        self.usdc_pool = LiquidityPool(chain, self.usdc.address, "Curve USDC LP", "usdcCRV")
        self.eth_gauge = self._deploy_gauge(self.eth_pool)
        self.usdc_gauge = self._deploy_gauge(self.usdc_pool)

        # Triggers
        # The ETH protection market covers an exploit of the ETH pool itself
        self.eth_trigger = SharePriceTrigger(
            chain, "ETH Pool Share Price Trigger", "ETH-SPT",
            "Triggers when the ETH pool's virtual price decreases", [1], self.deployer,
            self.eth_pool.address,
        )
        self.usdc_trigger = MockTrigger(
            chain, "Mock Trigger", "MOCK", "A mock trigger that anyone can toggle", [3], self.deployer,
        )

        # Markets
        self.comptroller = Comptroller(chain)
        comptroller = self.comptroller.address
        self.eth_money_market = CozyEther(chain, comptroller, ETH_ADDRESS, "Cozy ETH", "cozyETH")
        self.eth_protection_market = CozyEther(
            chain, comptroller, ETH_ADDRESS, "Cozy ETH Protection", "cozyETH-PROT", trigger=self.eth_trigger.address,
        )
        self.usdc_money_market = CozyToken(chain, comptroller, self.usdc.address, "Cozy USDC", "cozyUSDC")
        self.usdc_protection_market = CozyToken(
            chain, comptroller, self.usdc.address, "Cozy USDC Protection", "cozyUSDC-PROT",
            trigger=self.usdc_trigger.address,
        )

        # Funds supplied to protection markets can be lost, so they are never collateral
        self.comptroller.support_market(self.eth_money_market.address)
        self.comptroller.support_market(self.eth_protection_market.address, collateral_factor=0)
        self.comptroller.support_market(self.usdc_money_market.address)
        self.comptroller.support_market(self.usdc_protection_market.address, collateral_factor=0)
        usdc_price = MANTISSA // eth_price_in_usd
        self.comptroller.set_underlying_price(self.usdc_money_market.address, usdc_price)
        self.comptroller.set_underlying_price(self.usdc_protection_market.address, usdc_price)

        # Helpers and adapters
        self.maximillion = Maximillion(chain, self.eth_money_market.address)
        self.multicall = Multicall(chain)
        self.eth_adapter = EtherPoolInvest(
            chain, self.eth_money_market.address, self.eth_protection_market.address,
            self.maximillion.address, self.eth_pool.address, self.eth_gauge.address,
        )
        self.usdc_adapter = TokenPoolInvest(
            chain, self.usdc_money_market.address, self.usdc_protection_market.address,
            self.usdc_pool.address, self.usdc_gauge.address,
        )

        self._supply_markets(market_liquidity, eth_price_in_usd)

        # History tracking for simulations
        self.virtual_price_history = []
        self.money_market_debt_history = []
        self.protection_market_debt_history = []
        self.money_market_value_history = []
        self.protection_market_value_history = []

    def _deploy_gauge(self, pool):
        gauge = RewardGauge(self.chain, pool.lp_token)
        for reward in (self.crv, self.cvx):
            reward.add_minter(gauge.address)
            gauge.add_reward(reward.address)
        return gauge

    def _supply_markets(self, liquidity, eth_price_in_usd):
        chain = self.chain
        for market in (self.eth_money_market, self.eth_protection_market):
            chain.transact(self.deployer, market.address, "mint", value=liquidity).expect_success()

        usdc_liquidity = liquidity * eth_price_in_usd
        self.usdc.set_balance(self.deployer, 2 * usdc_liquidity)
        for market in (self.usdc_money_market, self.usdc_protection_market):
            chain.transact(self.deployer, self.usdc.address, "approve", market.address, usdc_liquidity)
            chain.transact(self.deployer, market.address, "mint", usdc_liquidity).expect_success()

    # --- Accounts ---

    def open_account(self, collateral=10 * MANTISSA, balance=0):
        """
        Creates a user with a proxy wallet whose native currency `collateral` is supplied
        to the ETH money market and enabled as collateral.

        Args:
            collateral: Native currency supplied as collateral by the proxy
            balance: Native currency held by the user's own account

        Returns:
            Account of the new user
        """
        if collateral < 0:
            raise ValueError("Collateral must not be negative")

        owner = self.chain.create_account(balance=balance)
        proxy = ProxyWallet(self.chain, owner).address

        # Fund and act as the proxy directly, the way a forked node impersonates an account
        if collateral > 0:
            self.chain.set_balance(proxy, collateral)
            self.chain.call(proxy, self.eth_money_market.address, "mint", value=collateral)
            self.chain.call(proxy, self.comptroller.address, "enter_markets", [self.eth_money_market.address])

        logger.info("Opened account %s with proxy %s and %s collateral", owner, proxy, collateral)
        return Account(owner, proxy)

    def execute(self, account, target, function, *args, value=0):
        """Sends a transaction from the account owner through its proxy wallet."""
        return self.chain.transact(account.owner, account.proxy, "execute", target, function, *args, value=value)

    def adapter_for(self, market):
        if market in (self.eth_money_market.address, self.eth_protection_market.address):
            return self.eth_adapter
        return self.usdc_adapter

    def invest(self, account, market, borrow_amount, min_amount_out=0):
        """Borrows from `market` and stakes the proceeds in the matching venue."""
        adapter = self.adapter_for(market)
        return self.execute(account, adapter.address, "invest", market, borrow_amount, min_amount_out)

    def divest(self, account, market, redeem_amount=None, min_amount_out=0, recipient=None, value=0):
        """
        Unwinds `redeem_amount` of the account's staked position (all of it by default),
        repays the debt in `market` and sends the rest to `recipient` (the owner by default).
        """
        adapter = self.adapter_for(market)
        if redeem_amount is None:
            redeem_amount = self.chain.contract(adapter.gauge).balance_of(account.proxy)
        if recipient is None:
            recipient = account.owner
        return self.execute(
            account, adapter.address, "divest", market, recipient, redeem_amount, min_amount_out, value=value,
        )

    def batch(self, account, calls, value=0):
        """Runs a multicall batch from the account's proxy wallet."""
        return self.execute(account, self.multicall.address, "batch_calls", calls, value=value)

    # --- State ---

    def get_position(self, account, market):
        """
        Returns the account's position in the venue paired with `market`.

        Returns:
            Dictionary with the staked LP balance, its value in underlying, the debt and
            the resulting net value
        """
        adapter = self.adapter_for(market)
        pool = self.chain.contract(adapter.pool)
        staked = self.chain.contract(adapter.gauge).balance_of(account.proxy)
        value = staked * pool.get_virtual_price() // MANTISSA
        debt = self.chain.contract(market).borrow_balance_stored(account.proxy)
        return {
            'staked': staked,
            'value': value,
            'debt': debt,
            'net_value': value - debt,
        }

    def toggle_usdc_trigger(self):
        """Sets the mock trigger's condition and lets the USDC protection market observe it."""
        self.chain.transact(self.deployer, self.usdc_trigger.address, "set_should_toggle", True)
        self.chain.transact(self.deployer, self.usdc_protection_market.address, "accrue_interest")
        return self.usdc_protection_market.is_triggered

    def exploit_eth_pool(self, fraction):
        """
        Drains `fraction` of the ETH pool's reserves and pokes the ETH protection market so
        it checks its trigger.

        Returns:
            True if the protection market is now triggered
        """
        attacker = self.chain.create_account()
        amount = int(self.eth_pool.reserves * fraction)
        self.eth_pool.drain(attacker, amount)
        self.chain.transact(self.deployer, self.eth_protection_market.address, "accrue_interest")
        return self.eth_protection_market.is_triggered

    def _update_history(self, money_account, protection_account):
        money = self.get_position(money_account, self.eth_money_market.address)
        protection = self.get_position(protection_account, self.eth_protection_market.address)

        self.virtual_price_history.append(self.eth_pool.get_virtual_price() / MANTISSA)
        self.money_market_debt_history.append(money['debt'] / MANTISSA)
        self.protection_market_debt_history.append(protection['debt'] / MANTISSA)
        self.money_market_value_history.append(money['net_value'] / MANTISSA)
        self.protection_market_value_history.append(protection['net_value'] / MANTISSA)

    def simulate_scenario(self, steps=50, blocks_per_step=100, borrow_amount=5 * MANTISSA,
                          yield_per_step=0.0005, yield_volatility=0.0005, exploit_probability=0.02,
                          exploit_fraction=0.3, plot_results=True):
        """
        Runs a simulation of two identical leveraged positions in the ETH pool, one
        borrowed from the money market and one from the protection market, while the pool
        earns random yield and may be exploited.

        Args:
            steps: Number of simulation steps
            blocks_per_step: Blocks mined per step
            borrow_amount: Native currency each account borrows and invests
            yield_per_step: Mean pool yield per step, as a fraction of reserves
            yield_volatility: Standard deviation of the pool yield per step
            exploit_probability: Chance per step that the pool is exploited
            exploit_fraction: Fraction of the reserves lost in the exploit
            plot_results: Whether to plot the results

        Returns:
            Dictionary with simulation results
        """
        money_account = self.open_account()
        protection_account = self.open_account()
        self.invest(money_account, self.eth_money_market.address, borrow_amount).expect_success()
        self.invest(protection_account, self.eth_protection_market.address, borrow_amount).expect_success()

        # Reset history
        self.virtual_price_history = []
        self.money_market_debt_history = []
        self.protection_market_debt_history = []
        self.money_market_value_history = []
        self.protection_market_value_history = []

        yields = np.random.normal(yield_per_step, yield_volatility, steps)
        exploits = np.random.random(steps) < exploit_probability
        time_points = np.arange(1, steps + 1) * blocks_per_step

        exploit_step = None
        for i in range(steps):
            self.chain.mine(blocks_per_step)

            if exploit_step is None and exploits[i]:
                exploit_step = i
                triggered = self.exploit_eth_pool(exploit_fraction)
                logger.info("Step %s: ETH pool exploited, protection market triggered: %s", i, triggered)
            elif yields[i] > 0 and self.eth_pool.reserves > 0:
                donation = int(self.eth_pool.reserves * yields[i])
                self.chain.transact(self.deployer, self.eth_pool.address, "donate", donation, value=donation)

            self._update_history(money_account, protection_account)

        rewards_before = self.crv.balance_of(money_account.owner)
        money_received = self._close(money_account, self.eth_money_market.address)
        protection_received = self._close(protection_account, self.eth_protection_market.address)

        if plot_results:
            fig, axs = plt.subplots(3, 1, figsize=(12, 12), sharex=True)

            # Plot pool share price
            axs[0].plot(time_points, self.virtual_price_history)
            axs[0].set_title('ETH Pool Virtual Price')
            axs[0].set_ylabel('ETH per LP')

            # Plot debts
            axs[1].plot(time_points, self.money_market_debt_history, label='Money market')
            axs[1].plot(time_points, self.protection_market_debt_history, label='Protection market')
            axs[1].set_title('Debt')
            axs[1].set_ylabel('ETH')
            axs[1].legend()

            # Plot net position values
            axs[2].plot(time_points, self.money_market_value_history, label='Money market')
            axs[2].plot(time_points, self.protection_market_value_history, label='Protection market')
            axs[2].set_title('Net Position Value')
            axs[2].set_ylabel('ETH')
            axs[2].set_xlabel('Blocks')
            axs[2].legend()

            plt.tight_layout()
            plt.show()

        money_debt = self.eth_money_market.borrow_balance_stored(money_account.proxy)
        protection_debt = self.eth_protection_market.borrow_balance_stored(protection_account.proxy)
        return {
            'exploit_step': exploit_step,
            'triggered': self.eth_protection_market.is_triggered,
            'final_virtual_price': self.eth_pool.get_virtual_price() / MANTISSA,
            'money_market_received': money_received / MANTISSA,
            'money_market_remaining_debt': money_debt / MANTISSA,
            'money_market_net': (money_received - money_debt) / MANTISSA,
            'protection_market_received': protection_received / MANTISSA,
            'protection_market_remaining_debt': protection_debt / MANTISSA,
            'protection_market_net': (protection_received - protection_debt) / MANTISSA,
            'rewards_claimed': (self.crv.balance_of(money_account.owner) - rewards_before) / MANTISSA,
        }

    def _close(self, account, market):
        before = self.chain.get_balance(account.owner)
        self.divest(account, market).expect_success()
        return self.chain.get_balance(account.owner) - before
