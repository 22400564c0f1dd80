"""
Unit tests for the money and protection markets, the Comptroller and Maximillion.
"""

import unittest
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from chain import FailureLogError, MAX_UINT256, Revert
from comptroller import Comptroller
from cozy_market import Error, FailureInfo
from model_config import MANTISSA
from protection_model import ProtectionProtocolModel


class MarketTestCase(unittest.TestCase):
    def setUp(self):
        """Deploy the system and give the borrower 10 ETH of collateral"""
        self.model = ProtectionProtocolModel(eth_price_in_usd=2000, market_liquidity=1_000 * MANTISSA)
        self.chain = self.model.chain
        self.borrower = self.chain.create_account(balance=100 * MANTISSA)

        eth_market = self.model.eth_money_market.address
        self.chain.transact(self.borrower, eth_market, "mint", value=10 * MANTISSA).expect_success()
        self.chain.transact(self.borrower, self.model.comptroller.address, "enter_markets", [eth_market])

    def borrow(self, market, amount):
        return self.chain.transact(self.borrower, market.address, "borrow", amount)


class TestMoneyMarket(MarketTestCase):
    def test_supply(self):
        """Test that supplied collateral is recorded and entered"""
        market = self.model.eth_money_market
        self.assertEqual(market.supply_balance(self.borrower), 10 * MANTISSA)
        self.assertTrue(self.model.comptroller.check_membership(self.borrower, market.address))
        self.assertEqual(self.model.comptroller.get_assets_in(self.borrower), [market.address])

    def test_borrow(self):
        """Test borrowing against collateral"""
        market = self.model.usdc_money_market
        receipt = self.borrow(market, 1_000 * MANTISSA)

        self.assertEqual(receipt.return_value, Error.NO_ERROR)
        self.assertEqual(receipt.find_log("Borrow").args["borrow_amount"], 1_000 * MANTISSA)
        self.assertEqual(self.model.usdc.balance_of(self.borrower), 1_000 * MANTISSA)
        self.assertEqual(market.borrow_balance_stored(self.borrower), 1_000 * MANTISSA)
        self.assertTrue(self.model.comptroller.check_membership(self.borrower, market.address))

    def test_borrow_without_collateral(self):
        """Test that an undercollateralized borrow fails with a code instead of reverting"""
        # 10 ETH at a 75% collateral factor backs 15,000 USDC
        market = self.model.usdc_money_market
        receipt = self.borrow(market, 20_000 * MANTISSA)

        self.assertEqual(receipt.return_value, Error.COMPTROLLER_REJECTION)
        self.assertEqual(self.model.usdc.balance_of(self.borrower), 0)
        with self.assertRaises(FailureLogError) as cm:
            receipt.find_log("Borrow")
        self.assertEqual(cm.exception.codes, {
            "error": Error.COMPTROLLER_REJECTION,
            "info": FailureInfo.BORROW_COMPTROLLER_REJECTION,
            "detail": Comptroller.INSUFFICIENT_LIQUIDITY,
        })

    def test_account_liquidity(self):
        err, liquidity, shortfall = self.model.comptroller.get_account_liquidity(self.borrower)
        self.assertEqual(err, 0)
        self.assertEqual(liquidity, 75 * MANTISSA // 10)
        self.assertEqual(shortfall, 0)

    def test_borrow_cap(self):
        """Test that borrows beyond the cap revert"""
        market = self.model.usdc_money_market
        self.model.comptroller.set_market_borrow_caps([market.address], [500 * MANTISSA])

        with self.assertRaises(Revert) as cm:
            self.borrow(market, 1_000 * MANTISSA)
        self.assertEqual(cm.exception.reason, "market borrow cap reached")

        self.assertEqual(self.borrow(market, 500 * MANTISSA).return_value, Error.NO_ERROR)

    def test_interest_accrues(self):
        """Test that debt grows with every block"""
        market = self.model.usdc_money_market
        self.borrow(market, 1_000 * MANTISSA)
        self.chain.mine(1_000)

        debt = self.chain.call(self.borrower, market.address, "borrow_balance_current", self.borrower)
        self.assertGreater(debt, 1_000 * MANTISSA)
        self.assertAlmostEqual(market.total_borrows, debt, delta=1_000)

    def test_repay_all(self):
        """Test that MAX_UINT256 repays the whole current debt"""
        market = self.model.usdc_money_market
        self.borrow(market, 1_000 * MANTISSA)
        self.chain.mine(100)
        self.model.usdc.set_balance(self.borrower, 2_000 * MANTISSA)
        self.chain.transact(self.borrower, self.model.usdc.address, "approve", market.address, MAX_UINT256)

        receipt = self.chain.transact(self.borrower, market.address, "repay_borrow", MAX_UINT256)

        self.assertEqual(receipt.return_value, Error.NO_ERROR)
        self.assertEqual(market.borrow_balance_stored(self.borrower), 0)
        self.assertLess(self.model.usdc.balance_of(self.borrower), 1_000 * MANTISSA)

    def test_repay_more_than_owed_reverts(self):
        market = self.model.usdc_money_market
        self.borrow(market, 1_000 * MANTISSA)
        self.model.usdc.set_balance(self.borrower, 2_000 * MANTISSA)
        self.chain.transact(self.borrower, self.model.usdc.address, "approve", market.address, MAX_UINT256)

        with self.assertRaises(Revert) as cm:
            self.chain.transact(self.borrower, market.address, "repay_borrow", 2_000 * MANTISSA)
        self.assertEqual(cm.exception.reason, "REPAY_BORROW_NEW_ACCOUNT_BORROW_BALANCE_CALCULATION_FAILED")

    def test_redeem(self):
        """Test withdrawing collateral, and that borrows keep it locked"""
        market = self.model.eth_money_market
        balance = self.chain.get_balance(self.borrower)
        receipt = self.chain.transact(self.borrower, market.address, "redeem_underlying", MANTISSA)
        self.assertEqual(receipt.return_value, Error.NO_ERROR)
        self.assertEqual(self.chain.get_balance(self.borrower), balance + MANTISSA)

        # 9 ETH backs at most 6.75 ETH of debt
        self.borrow(market, 6 * MANTISSA)
        receipt = self.chain.transact(self.borrower, market.address, "redeem_underlying", 5 * MANTISSA)
        self.assertEqual(receipt.return_value, Error.COMPTROLLER_REJECTION)
        self.assertEqual(market.supply_balance(self.borrower), 9 * MANTISSA)

    def test_redeem_more_than_supplied(self):
        receipt = self.chain.transact(self.borrower, self.model.eth_money_market.address, "redeem_underlying",
                                      11 * MANTISSA)
        self.assertEqual(receipt.return_value, Error.TOKEN_INSUFFICIENT_BALANCE)


class TestProtectionMarket(MarketTestCase):
    def test_protection_market_is_not_collateral(self):
        market = self.model.usdc_protection_market
        self.assertEqual(self.model.comptroller.markets[market.address].collateral_factor, 0)

    def test_trigger_forgives_debt(self):
        """Test that a triggered market forgives all debt and stops lending"""
        market = self.model.usdc_protection_market
        self.assertEqual(self.borrow(market, 1_000 * MANTISSA).return_value, Error.NO_ERROR)
        self.assertFalse(market.is_triggered)

        self.assertTrue(self.model.toggle_usdc_trigger())

        self.assertTrue(market.is_triggered)
        self.assertEqual(market.borrow_balance_stored(self.borrower), 0)
        self.assertEqual(market.total_borrows, 0)
        self.assertEqual(len(self.chain.events_named("TriggerSet", market.address)), 1)

        # The borrowed funds are the borrower's to keep
        self.assertEqual(self.model.usdc.balance_of(self.borrower), 1_000 * MANTISSA)

    def test_triggered_market_rejects_borrow_and_mint(self):
        market = self.model.usdc_protection_market
        self.model.toggle_usdc_trigger()

        receipt = self.borrow(market, 1_000 * MANTISSA)
        self.assertEqual(receipt.return_value, Error.MARKET_TRIGGERED)
        self.assertEqual(receipt.failures()[0].args["info"], FailureInfo.BORROW_MARKET_TRIGGERED)

        self.model.usdc.set_balance(self.borrower, 1_000 * MANTISSA)
        self.chain.transact(self.borrower, self.model.usdc.address, "approve", market.address, MAX_UINT256)
        receipt = self.chain.transact(self.borrower, market.address, "mint", 1_000 * MANTISSA)
        self.assertEqual(receipt.return_value, Error.MARKET_TRIGGERED)
        self.assertEqual(receipt.failures()[0].args["info"], FailureInfo.MINT_MARKET_TRIGGERED)

    def test_triggered_ether_market_reverts_mint(self):
        market = self.model.eth_protection_market
        pool = self.model.eth_pool.address
        self.chain.transact(self.borrower, pool, "add_liquidity", 10 * MANTISSA, 0, value=10 * MANTISSA)

        self.assertTrue(self.model.exploit_eth_pool(0.5))
        self.assertTrue(market.is_triggered)

        with self.assertRaises(Revert) as cm:
            self.chain.transact(self.borrower, market.address, "mint", value=MANTISSA)
        self.assertEqual(cm.exception.reason, f"mint failed ({int(Error.MARKET_TRIGGERED)})")

    def test_suppliers_share_remaining_cash(self):
        """Test that after the trigger suppliers split what was not borrowed"""
        market = self.model.usdc_protection_market
        supplied = market.supply_balance(self.model.deployer)
        self.borrow(market, 1_000 * MANTISSA)
        self.model.toggle_usdc_trigger()

        self.assertEqual(market.supply_balance(self.model.deployer), supplied - 1_000 * MANTISSA)

    def test_untriggered_protection_market_accrues(self):
        market = self.model.usdc_protection_market
        self.borrow(market, 1_000 * MANTISSA)
        self.chain.mine(10)
        debt = self.chain.call(self.borrower, market.address, "borrow_balance_current", self.borrower)
        self.assertGreater(debt, 1_000 * MANTISSA)


class TestMaximillion(MarketTestCase):
    def test_repay_behalf_refunds_excess(self):
        """Test that Maximillion repays the debt and refunds the rest"""
        market = self.model.eth_money_market
        self.borrow(market, MANTISSA)
        balance = self.chain.get_balance(self.borrower)

        self.chain.transact(self.borrower, self.model.maximillion.address, "repay_behalf", self.borrower,
                            value=2 * MANTISSA)

        self.assertEqual(market.borrow_balance_stored(self.borrower), 0)
        self.assertEqual(self.chain.get_balance(self.model.maximillion.address), 0)
        self.assertGreater(self.chain.get_balance(self.borrower), balance - 2 * MANTISSA)
        self.assertLess(self.chain.get_balance(self.borrower), balance - MANTISSA)

    def test_repay_behalf_partial(self):
        market = self.model.eth_money_market
        self.borrow(market, 2 * MANTISSA)

        self.chain.transact(self.borrower, self.model.maximillion.address, "repay_behalf_explicit",
                            self.borrower, market.address, value=MANTISSA)

        self.assertGreater(market.borrow_balance_stored(self.borrower), MANTISSA)
        self.assertLess(market.borrow_balance_stored(self.borrower), 2 * MANTISSA)


if __name__ == "__main__":
    unittest.main()
