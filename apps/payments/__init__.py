"""Payments app package.

Client for the external payment processor and the idempotent refund
executor.
"""
