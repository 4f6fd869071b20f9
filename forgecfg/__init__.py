"""Configuration loader for a self-hosted Git service."""

__version__ = "0.1.0"
