"""Sponsored registration API for the on-chain Agent Directory."""

__version__ = "2.0.0"
