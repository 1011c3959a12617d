"""
DEX protocol adapters
"""

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.adapters.jupiter import JupiterAdapter
from mirrorbot.adapters.raydium import RaydiumAdapter

__all__ = ["ProtocolAdapter", "JupiterAdapter", "RaydiumAdapter"]
