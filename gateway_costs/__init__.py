"""
Gateway Costs.

Per-user and per-model spend reports for an LLM gateway, backed by AWS Cost
Explorer with a local cache of finalized billing data.
"""

__version__ = "0.1.0"
