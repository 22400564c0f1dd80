"""
Unit tests for the complete protection market model.
"""

import unittest
import sys
import os
import numpy as np

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from model_config import MANTISSA
from protection_model import Account, ProtectionProtocolModel


class TestProtectionProtocolModel(unittest.TestCase):
    def setUp(self):
        """Initialize a fresh model for each test"""
        np.random.seed(42)
        self.model = ProtectionProtocolModel(eth_price_in_usd=2000, market_liquidity=1_000 * MANTISSA)

    def test_markets_are_supplied(self):
        deployer = self.model.deployer
        self.assertEqual(self.model.eth_money_market.supply_balance(deployer), 1_000 * MANTISSA)
        self.assertEqual(self.model.eth_protection_market.get_cash(), 1_000 * MANTISSA)
        self.assertEqual(self.model.usdc_money_market.get_cash(), 2_000_000 * MANTISSA)
        self.assertEqual(self.model.usdc_protection_market.supply_balance(deployer), 2_000_000 * MANTISSA)

    def test_markets_reference_triggers(self):
        self.assertIsNone(self.model.eth_money_market.trigger)
        self.assertIsNone(self.model.usdc_money_market.trigger)
        self.assertEqual(self.model.eth_protection_market.trigger, self.model.eth_trigger.address)
        self.assertEqual(self.model.usdc_protection_market.trigger, self.model.usdc_trigger.address)
        self.assertEqual(self.model.usdc_trigger.get_platform_ids(), [3])

    def test_open_account(self):
        """Test that a new account's proxy holds entered collateral"""
        account = self.model.open_account(collateral=5 * MANTISSA, balance=MANTISSA)

        self.assertIsInstance(account, Account)
        proxy = self.model.chain.contract(account.proxy)
        self.assertEqual(proxy.owner, account.owner)
        self.assertEqual(self.model.chain.get_balance(account.owner), MANTISSA)
        self.assertEqual(self.model.chain.get_balance(account.proxy), 0)
        self.assertEqual(self.model.eth_money_market.supply_balance(account.proxy), 5 * MANTISSA)
        self.assertTrue(self.model.comptroller.check_membership(account.proxy, self.model.eth_money_market.address))

    def test_open_account_with_invalid_collateral(self):
        with self.assertRaises(ValueError):
            self.model.open_account(collateral=-1)

    def test_get_position(self):
        account = self.model.open_account()
        market = self.model.eth_protection_market.address
        self.assertEqual(self.model.get_position(account, market),
                         {'staked': 0, 'value': 0, 'debt': 0, 'net_value': 0})

        self.model.invest(account, market, 5 * MANTISSA).expect_success()
        position = self.model.get_position(account, market)
        self.assertEqual(position['debt'], 5 * MANTISSA)
        self.assertGreater(position['value'], 5 * MANTISSA * 99 // 100)
        self.assertLess(position['net_value'], 0)

    def test_simulation_with_exploit(self):
        """Test that a protection market borrower comes out ahead of a money market borrower"""
        results = self.model.simulate_scenario(steps=5, exploit_probability=1.0, exploit_fraction=0.5,
                                               plot_results=False)

        self.assertEqual(results['exploit_step'], 0)
        self.assertTrue(results['triggered'])
        self.assertEqual(results['protection_market_remaining_debt'], 0)
        self.assertGreater(results['money_market_remaining_debt'], 0)
        self.assertGreater(results['protection_market_net'], results['money_market_net'])
        self.assertLess(self.model.virtual_price_history[0], 0.6)
        self.assertEqual(len(self.model.virtual_price_history), 5)

    def test_simulation_without_exploit(self):
        results = self.model.simulate_scenario(steps=5, exploit_probability=0.0, plot_results=False)

        self.assertIsNone(results['exploit_step'])
        self.assertFalse(results['triggered'])
        self.assertGreater(results['rewards_claimed'], 0)
        self.assertEqual(len(self.model.money_market_debt_history), 5)
        self.assertTrue(all(debt > 0 for debt in self.model.protection_market_debt_history))


if __name__ == "__main__":
    unittest.main()
