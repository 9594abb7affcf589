"""
Unit tests: pure domain rules (compatibility, scoring, pricing), value objects,
configuration loading and messaging, each exercised without a store.
"""
