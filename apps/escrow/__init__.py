"""Escrow app package.

Holds the funds of each confirmed booking until they are released to
the space owner or refunded to the payer, with an append-only audit log.
"""
