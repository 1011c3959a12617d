"""
Wallet mirror bot for Solana: copies a target wallet's Jupiter and Raydium trades
"""

__version__ = "0.1.0"
