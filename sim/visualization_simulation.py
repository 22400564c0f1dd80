"""
Visualization simulation for the protection market model.

This script compares a position borrowed from the ETH money market with the same
position borrowed from the ETH protection market while the pool may be exploited.
"""

import numpy as np
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from protection_model import ProtectionProtocolModel


def run_visualization_simulation():
    np.random.seed(7)

    # Deploy the system
    model = ProtectionProtocolModel(eth_price_in_usd=2000)

    # Run a simulation with a likely exploit and plot results
    print("Running simulation with visualizations...")
    results = model.simulate_scenario(steps=60, exploit_probability=0.03, exploit_fraction=0.4, plot_results=True)

    print("\nSimulation Results:")
    for key, value in results.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    run_visualization_simulation()
