"""
Simple simulation for the protection market model.

This script walks through a leveraged position on the USDC protection market:
invest, a batched partial unwind, the trigger firing and the final divest.
"""

import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from protection_model import ProtectionProtocolModel
from model_config import MANTISSA
from multicall import Call


def print_position(model, account, market):
    position = model.get_position(account, market)
    print(f"  Staked LP: {position['staked'] / MANTISSA:.4f}")
    print(f"  Debt: {position['debt'] / MANTISSA:.4f} USDC")
    print(f"  Net value: {position['net_value'] / MANTISSA:.4f} USDC")


def run_basic_simulation():
    # Deploy the system
    model = ProtectionProtocolModel(eth_price_in_usd=2000)
    market = model.usdc_protection_market.address

    print("Opening account with 10 ETH of collateral...")
    account = model.open_account(collateral=10 * MANTISSA)

    print("\nInvesting 5000 USDC borrowed from the protection market...")
    model.invest(account, market, 5_000 * MANTISSA).expect_success()
    print_position(model, account, market)

    # Let interest accrue
    model.chain.mine(1_000)

    print("\nUnwinding a third of the position in one batch...")
    staked = model.usdc_gauge.balance_of(account.proxy)
    calls = [
        Call.external(model.usdc_gauge.address, "withdraw", staked // 3),
        Call.external(model.usdc_pool.address, "remove_liquidity_one_coin", staked // 3, 0),
        Call.self_context("repay_borrow_cozy_token", market),
        Call.external(model.usdc_gauge.address, "claim_rewards", require_success=False),
    ]
    receipt = model.batch(account, calls)
    print(f"  Optional calls that failed: {len(receipt.logs('CallFailed'))}")
    print_position(model, account, market)

    print("\nToggling the trigger...")
    triggered = model.toggle_usdc_trigger()
    print(f"  Protection market triggered: {triggered}")
    print_position(model, account, market)

    print("\nDivesting the rest of the position...")
    model.divest(account, market).expect_success()
    print_position(model, account, market)
    print(f"  USDC received: {model.usdc.balance_of(account.owner) / MANTISSA:.4f}")
    print(f"  CRV received: {model.crv.balance_of(account.owner) / MANTISSA:.4f}")
    print(f"  CVX received: {model.cvx.balance_of(account.owner) / MANTISSA:.4f}")


if __name__ == "__main__":
    run_basic_simulation()
