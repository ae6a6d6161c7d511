"""Construction site ESG emissions accounting and aggregation engine."""
