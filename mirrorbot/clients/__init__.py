"""
Network clients: Solana RPC, transaction submission, Jupiter API, Raydium AMM and token metadata
"""
