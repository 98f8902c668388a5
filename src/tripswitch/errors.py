"""Shared error types for tripswitch."""


class TripswitchError(Exception):
    """Root of all exceptions raised by tripswitch."""
