"""
Core modules for Gateway Costs.

This package contains freshness partitioning, aggregation, reporting periods,
the reconciling query service that combines cached and live cost data, and
the cost service built on top of it.
"""
