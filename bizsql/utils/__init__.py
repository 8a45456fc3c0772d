"""
Shared utilities - logging, errors, cancellation
"""
