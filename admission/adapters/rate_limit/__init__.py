"""Rate limiting adapters.

This package keeps the admission algorithm (``limiter``) separate from the
record storage (``in_memory``) so the store can be swapped without changing
the limiter or the HTTP layer.
"""
