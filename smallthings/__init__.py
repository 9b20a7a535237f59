"""Smallthings: persistence layer for a hyperlocal listings marketplace."""

__version__ = "0.1.0"
