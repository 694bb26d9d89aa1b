"""Store service domain logic."""
