"""
Core domain: models, configuration, classification, ledger and trading loops
"""
