"""Headless terminal multiplexer and helpers for bootstrapping remote shells."""

__version__ = "0.1.0"