"""Disputes app package.

Dispute lifecycle (open -> resolved) and the refunds or releases a
resolution triggers.
"""
