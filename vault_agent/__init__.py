"""Vault Agent - a tool-using assistant for a markdown notes vault."""

__version__ = "0.1.0"

from vault_agent.config import Config
from vault_agent.main import main

__all__ = ["Config", "main", "__version__"]
