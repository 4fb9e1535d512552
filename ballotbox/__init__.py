"""Ballot submission and live result aggregation for election voting."""

__version__ = "0.1.0"
