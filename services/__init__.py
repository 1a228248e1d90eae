"""services package initializer — explicit exports only."""

__all__ = ["quiz"]
