"""Grapple: proposals, votes and the event rooms they turn into."""

__version__ = "1.0.0"
