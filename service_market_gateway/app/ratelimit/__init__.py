"""
Rate limiting package for the gateway.

Holds the pacer that spaces outbound requests so the shared upstream
budget is never exceeded.
"""

from .pacer import Pacer

__all__ = ["Pacer"]
