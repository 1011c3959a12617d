"""
Accessors over jsonParsed transactions returned by getTransaction
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


ParsedTransaction = Dict[str, Any]


def _message(transaction: ParsedTransaction) -> Dict[str, Any]:
    return (transaction.get("transaction") or {}).get("message") or {}


def _meta(transaction: ParsedTransaction) -> Dict[str, Any]:
    return transaction.get("meta") or {}


def account_keys(transaction: ParsedTransaction) -> List[str]:
    """Account keys as base58 strings; jsonParsed returns dicts, legacy encodings plain strings"""
    keys = []
    for key in _message(transaction).get("accountKeys") or []:
        keys.append(key["pubkey"] if isinstance(key, dict) else key)

    # v0 transactions append lookup-table addresses after the static keys
    loaded = _meta(transaction).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


def outer_instructions(transaction: ParsedTransaction) -> List[Dict[str, Any]]:
    return list(_message(transaction).get("instructions") or [])


def inner_instruction_groups(transaction: ParsedTransaction) -> List[Dict[str, Any]]:
    return list(_meta(transaction).get("innerInstructions") or [])


def token_balances(transaction: ParsedTransaction, when: str) -> List[Dict[str, Any]]:
    """Token balance snapshot, `when` is "pre" or "post" """
    if when not in ("pre", "post"):
        raise ValueError(f"when must be 'pre' or 'post', got {when!r}")
    return list(_meta(transaction).get(f"{when}TokenBalances") or [])


def ui_amount(ui_token_amount: Dict[str, Any]) -> Decimal:
    """Exact decimal amount from a uiTokenAmount object"""
    if ui_token_amount.get("uiAmountString") is not None:
        return Decimal(ui_token_amount["uiAmountString"])
    if ui_token_amount.get("amount") is not None:
        decimals = int(ui_token_amount.get("decimals") or 0)
        return Decimal(ui_token_amount["amount"]) / (Decimal(10) ** decimals)
    if ui_token_amount.get("uiAmount") is not None:
        return Decimal(str(ui_token_amount["uiAmount"]))
    return Decimal(0)


def owner_balance(transaction: ParsedTransaction, when: str, owner: str, mint: str) -> Decimal:
    """Total balance of `mint` across the token accounts `owner` holds in this transaction"""
    total = Decimal(0)
    for balance in token_balances(transaction, when):
        if balance.get("owner") == owner and balance.get("mint") == mint:
            total += ui_amount(balance.get("uiTokenAmount") or {})
    return total


def owner_delta(transaction: ParsedTransaction, owner: str, mint: str) -> Decimal:
    return owner_balance(transaction, "post", owner, mint) - owner_balance(transaction, "pre", owner, mint)


def token_account_mint(transaction: ParsedTransaction, address: str) -> Optional[Tuple[str, int]]:
    """
    Mint and decimals of a token account referenced by this transaction

    Uses the accountIndex of the pre/post token balances, so no RPC is needed
    for accounts whose balances the node reported.
    """
    keys = account_keys(transaction)
    try:
        index = keys.index(address)
    except ValueError:
        return None

    for when in ("post", "pre"):
        for balance in token_balances(transaction, when):
            if balance.get("accountIndex") == index and balance.get("mint"):
                decimals = int((balance.get("uiTokenAmount") or {}).get("decimals") or 0)
                return balance["mint"], decimals
    return None


def fee_lamports(transaction: ParsedTransaction) -> int:
    return int(_meta(transaction).get("fee") or 0)
