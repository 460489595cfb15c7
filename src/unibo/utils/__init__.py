"""
unibo.utils

Small shared helpers (locking, hashing).
"""
