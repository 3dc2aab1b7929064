"""
Billing API clients for Gateway Costs.

Provides the Cost Explorer client and a demo client with fixed data.
"""

from .cost_explorer import CostExplorerClient
from .demo import DemoBillingClient

__all__ = ["CostExplorerClient", "DemoBillingClient"]
