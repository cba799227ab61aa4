"""
Shared Kernel

Domain errors, events and the infrastructure every booking context relies on:
the transaction retry engine, the idempotency guard and the cache-backed lock store.
"""
