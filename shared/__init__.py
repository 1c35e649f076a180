"""
Shared kernel of the reservation engine

Aggregate and event base classes, Money and TimeInterval, the typed
error hierarchy, units of work and the message bus. Every bounded
context under apps/ builds on these.
"""
