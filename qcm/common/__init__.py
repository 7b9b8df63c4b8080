"""
Shared infrastructure for the attempt engine: logging, errors, serialization,
domain events and keyed locks.
"""
