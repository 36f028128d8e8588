"""Agent marketplace core — escrowed jobs, arbitration, validation, trust."""

__version__ = "0.1.0"
