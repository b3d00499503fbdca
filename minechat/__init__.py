"""MineChat channel connection and conversation sync engine."""

__version__ = "0.1.0"
