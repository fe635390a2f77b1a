"""
Core modules for Usage Lens.

This package contains the aggregation engine, period and timezone logic,
the tiered cache, the query backends and the facade that ties them together.
"""
