"""Rezzy dashboard service: session bootstrap, task wizards and plan gating."""

__version__ = "0.1.0"
