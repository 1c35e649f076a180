"""Bookings app package.

This app encapsulates the reservation side of the engine: parking
spaces with their rate schedules, the booking lifecycle, availability
checks and pricing. Confirmation runs under a per-space row lock so two
overlapping bookings can never both become Confirmed.
"""
