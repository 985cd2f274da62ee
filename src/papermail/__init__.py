"""Papermail credential core and background prefetch."""

__version__ = "0.1.0"
