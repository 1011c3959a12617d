"""
Configuration for the mirror bot
Loads a YAML file, substitutes ${ENV_VAR} references and validates into typed dataclasses
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from solders.pubkey import Pubkey

from mirrorbot.core.errors import ConfigurationError


@dataclass
class RPCConfig:
    """Solana RPC endpoint"""
    http_url: str
    ws_url: str
    commitment: str = "confirmed"
    timeout_s: float = 30.0
    reconnect_backoff_base_ms: int = 500
    reconnect_backoff_max_ms: int = 30000


@dataclass
class WalletConfig:
    """Operator keypair and the account being mirrored"""
    private_key: str
    target_wallet: str


@dataclass
class TradingConfig:
    """Sizing and exit parameters (amounts in lamports)"""
    trade_amount_lamports: int
    min_trade_lamports: int = 0
    slippage_bps: int = 500
    profit_target_multiple: float = 1.25
    exit_poll_interval_s: float = 5.0
    # How many signatures one poll window may deliver; the dedup cache keeps window * multiplier
    signatures_window: int = 10
    signature_cache_multiplier: int = 10


@dataclass
class JupiterConfig:
    api_url: str = "https://quote-api.jup.ag/v6"
    priority_fee_lamports: int = 500_000
    request_timeout_s: float = 10.0


@dataclass
class RaydiumConfig:
    compute_unit_limit: int = 500_000
    compute_unit_price_micro_lamports: int = 1_000_000


@dataclass
class TransactionConfig:
    """Broadcast and confirmation behaviour"""
    skip_preflight: bool = True
    max_retries: int = 5
    retry_delay_ms: int = 200
    confirmation_timeout_s: float = 60.0
    confirmation_poll_interval_s: float = 1.0


@dataclass
class LogConfig:
    level: str = "INFO"
    format: str = "console"
    output_file: Optional[str] = None


@dataclass
class AuditConfig:
    """CSV trade log"""
    enabled: bool = True
    file: str = "trade_log.csv"


@dataclass
class BotConfig:
    """Complete bot configuration"""
    rpc: RPCConfig
    wallet: WalletConfig
    trading: TradingConfig
    jupiter: JupiterConfig
    raydium: RaydiumConfig
    transactions: TransactionConfig
    logging: LogConfig
    audit: AuditConfig


class ConfigurationManager:
    """Reads and validates the bot configuration file"""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None

    def load_config(self) -> BotConfig:
        """
        Load, substitute and validate the configuration

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the YAML is malformed or values are invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(raw_config, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        self._config_data = self._substitute_env_vars(raw_config)
        return self.parse(self._config_data)

    def _substitute_env_vars(self, config: Any) -> Any:
        """Replace ${VAR} with the environment value, recursively"""
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ConfigurationError(f"Environment variable {var_name} not found")
                return value

            return re.sub(r"\$\{([^}]+)\}", replace_var, config)
        return config

    @staticmethod
    def parse(config: Dict[str, Any]) -> BotConfig:
        """Build a BotConfig from an already substituted dict"""
        rpc_data = config.get("rpc") or {}
        if not rpc_data.get("http_url") or not rpc_data.get("ws_url"):
            raise ConfigurationError("rpc.http_url and rpc.ws_url are required")

        wallet_data = config.get("wallet") or {}
        if not wallet_data.get("private_key"):
            raise ConfigurationError("wallet.private_key is required")
        target_wallet = wallet_data.get("target_wallet", "")
        try:
            Pubkey.from_string(target_wallet)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"wallet.target_wallet is not a valid address: {target_wallet!r}") from e

        trading_data = config.get("trading") or {}
        if "trade_amount_lamports" not in trading_data:
            raise ConfigurationError("trading.trade_amount_lamports is required")

        try:
            trading = TradingConfig(
                trade_amount_lamports=int(trading_data["trade_amount_lamports"]),
                min_trade_lamports=int(trading_data.get("min_trade_lamports", 0)),
                slippage_bps=int(trading_data.get("slippage_bps", 500)),
                profit_target_multiple=float(trading_data.get("profit_target_multiple", 1.25)),
                exit_poll_interval_s=float(trading_data.get("exit_poll_interval_s", 5.0)),
                signatures_window=int(trading_data.get("signatures_window", 10)),
                signature_cache_multiplier=int(trading_data.get("signature_cache_multiplier", 10)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid trading section: {e}") from e

        if trading.trade_amount_lamports <= 0:
            raise ConfigurationError("trading.trade_amount_lamports must be positive")
        if trading.min_trade_lamports < 0:
            raise ConfigurationError("trading.min_trade_lamports cannot be negative")
        if trading.profit_target_multiple <= 0:
            raise ConfigurationError("trading.profit_target_multiple must be positive")
        if trading.signatures_window < 1 or trading.signature_cache_multiplier < 1:
            raise ConfigurationError("signature cache window and multiplier must be at least 1")

        rpc = RPCConfig(
            http_url=rpc_data["http_url"],
            ws_url=rpc_data["ws_url"],
            commitment=rpc_data.get("commitment", "confirmed"),
            timeout_s=float(rpc_data.get("timeout_s", 30.0)),
            reconnect_backoff_base_ms=int(rpc_data.get("reconnect_backoff_base_ms", 500)),
            reconnect_backoff_max_ms=int(rpc_data.get("reconnect_backoff_max_ms", 30000)),
        )

        jupiter_data = config.get("jupiter") or {}
        jupiter = JupiterConfig(
            api_url=jupiter_data.get("api_url", JupiterConfig.api_url).rstrip("/"),
            priority_fee_lamports=int(jupiter_data.get("priority_fee_lamports", 500_000)),
            request_timeout_s=float(jupiter_data.get("request_timeout_s", 10.0)),
        )

        raydium_data = config.get("raydium") or {}
        raydium = RaydiumConfig(
            compute_unit_limit=int(raydium_data.get("compute_unit_limit", 500_000)),
            compute_unit_price_micro_lamports=int(
                raydium_data.get("compute_unit_price_micro_lamports", 1_000_000)
            ),
        )

        tx_data = config.get("transactions") or {}
        transactions = TransactionConfig(
            skip_preflight=bool(tx_data.get("skip_preflight", True)),
            max_retries=int(tx_data.get("max_retries", 5)),
            retry_delay_ms=int(tx_data.get("retry_delay_ms", 200)),
            confirmation_timeout_s=float(tx_data.get("confirmation_timeout_s", 60.0)),
            confirmation_poll_interval_s=float(tx_data.get("confirmation_poll_interval_s", 1.0)),
        )
        if transactions.max_retries < 1:
            raise ConfigurationError("transactions.max_retries must be at least 1")

        log_data = config.get("logging") or {}
        log_config = LogConfig(
            level=log_data.get("level", "INFO"),
            format=log_data.get("format", "console"),
            output_file=log_data.get("output_file"),
        )
        if log_config.format not in ("json", "console"):
            raise ConfigurationError(f"logging.format must be json or console, got {log_config.format!r}")

        audit_data = config.get("audit") or {}
        audit = AuditConfig(
            enabled=bool(audit_data.get("enabled", True)),
            file=audit_data.get("file", "trade_log.csv"),
        )

        return BotConfig(
            rpc=rpc,
            wallet=WalletConfig(private_key=wallet_data["private_key"], target_wallet=target_wallet),
            trading=trading,
            jupiter=jupiter,
            raydium=raydium,
            transactions=transactions,
            logging=log_config,
            audit=audit,
        )
