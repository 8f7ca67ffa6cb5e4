"""Settings configuration loader module.

This module handles loading and parsing of the main settings.conf file which contains
the escrow service settings: key material, network selection, marketplace fee,
mint limits, document store credentials and the list of broadcast relays.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.
Any key can be overridden through an environment variable named PUNKS_<KEY>
(upper case), which keeps private keys out of the file.

Required settings:
    network: Target network selector (mainnet or testnet)
    escrow_address: Custodial escrow address buyers and sellers pay into

Example settings.conf:
    [DEFAULT]
    network = mainnet
    escrow_address = ark1qq...
    fee_basis_points = 100
    relays = wss://relay.damus.io,wss://nos.lol

Raises:
    SettingsError: If the settings file is invalid or missing required settings
"""
from configparser import ConfigParser
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional
import os

ENV_PREFIX = 'PUNKS_'

class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid_values: List[str] = []
        self.missing_sections: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid_values or self.missing_sections)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing_sections:
            messages.append("Missing required sections:")
            messages.extend(f"  - {item}" for item in self.missing_sections)

        if self.missing:
            if messages:
                messages.append("")
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)

        if self.invalid_values:
            if messages:
                messages.append("")
            messages.append("Invalid values:")
            messages.extend(f"  - {item}" for item in self.invalid_values)

        return "\n".join(messages)

class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass

# Default settings
DEFAULTS = {
    'network': 'testnet',
    'escrow_private_key': '',
    'escrow_address': '',
    'wallet_rpc_url': 'http://127.0.0.1:7070',
    'wallet_rpc_user': '',
    'wallet_rpc_password': '',
    'wallet_timeout': '20',  # Seconds before a wallet call is abandoned
    'service_private_key': '',  # Mint co-signing key (hex)
    'legacy_whitelist': '',  # Comma separated token ids minted before co-signing existed
    'fee_basis_points': '100',  # 1% marketplace fee
    'max_supply': '1000',
    'mint_cap_per_identity': '5',
    'mint_window_seconds': '86400',  # 24 hour rolling window
    'collateral_min_amount': '10000',  # Fungible collateral coin range (sats)
    'collateral_max_amount': '10500',
    'document_backend': 'blob',  # blob, postgres or memory
    'blob_api_url': 'https://blob.vercel-storage.com',
    'blob_token': '',
    'db_url': 'postgresql://root@localhost:26257/defaultdb?sslmode=disable',
    'relays': 'wss://relay.damus.io,wss://nos.lol,wss://nostr.wine,wss://relay.snort.social',
    'broadcast_timeout': '10',
    'registry_cache_seconds': '30',
    'deposit_poll_interval': '60',
    'auto_execute': 'false',
    'listing_retention_days': '30',
    'api_host': '0.0.0.0',
    'api_port': '8000'
}

INT_SETTINGS = [
    'fee_basis_points',
    'max_supply',
    'mint_cap_per_identity',
    'mint_window_seconds',
    'collateral_min_amount',
    'collateral_max_amount',
    'registry_cache_seconds',
    'listing_retention_days',
    'api_port'
]

FLOAT_SETTINGS = [
    'wallet_timeout',
    'broadcast_timeout',
    'deposit_poll_interval'
]

NETWORKS = ('mainnet', 'testnet')
DOCUMENT_BACKENDS = ('blob', 'postgres', 'memory')

def _apply_env_overrides(settings: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Override settings with PUNKS_<KEY> environment variables."""
    for key in DEFAULTS:
        env_key = f"{ENV_PREFIX}{key.upper()}"
        if env_key in environ:
            settings[key] = environ[env_key]
    return settings

def load_settings_conf(
    settings_path: str = ".",
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Load and parse settings.conf file with strict validation

    A missing settings.conf is not an error: defaults plus environment
    overrides are used instead, which is how containerized deployments run.

    Args:
        settings_path: Directory containing settings.conf
        environ: Environment mapping, defaults to os.environ

    Returns:
        Dictionary containing parsed and validated settings

    Raises:
        SettingsError: If parsing fails or validation fails
    """
    config_path = Path(settings_path) / 'settings.conf'
    environ = os.environ if environ is None else environ

    try:
        parser = ConfigParser(defaults=DEFAULTS)
        if config_path.exists():
            parser.read(config_path)

        # Get settings from DEFAULT section
        settings = dict(parser['DEFAULT'])
        settings = _apply_env_overrides(settings, environ)

        return validate_settings(settings)

    except Exception as e:
        if isinstance(e, SettingsError):
            raise
        raise SettingsError(f"Error parsing settings.conf: {str(e)}")

def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate loaded settings.

    Args:
        settings: Dictionary of settings to validate

    Returns:
        Validated and processed settings

    Raises:
        SettingsError: If validation fails
    """
    errors = ConfigValidationError()

    # Validate required settings
    for key in ('network', 'escrow_address'):
        if not settings.get(key):
            errors.missing.append(key)

    # Convert numeric settings
    for key in INT_SETTINGS:
        try:
            settings[key] = int(settings[key])
        except (TypeError, ValueError):
            errors.invalid_values.append(f"{key}: expected an integer, got {settings.get(key)!r}")
    for key in FLOAT_SETTINGS:
        try:
            settings[key] = float(settings[key])
        except (TypeError, ValueError):
            errors.invalid_values.append(f"{key}: expected a number, got {settings.get(key)!r}")

    settings['auto_execute'] = str(settings.get('auto_execute', 'false')).strip().lower() in ('1', 'true', 'yes', 'on')
    settings['relays'] = [r.strip() for r in str(settings.get('relays', '')).split(',') if r.strip()]
    settings['legacy_whitelist'] = [
        t.strip().lower() for t in str(settings.get('legacy_whitelist', '')).split(',') if t.strip()
    ]

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    # Validate value ranges
    if settings['network'] not in NETWORKS:
        errors.invalid_values.append(f"network must be one of {', '.join(NETWORKS)}")
    if settings['document_backend'] not in DOCUMENT_BACKENDS:
        errors.invalid_values.append(f"document_backend must be one of {', '.join(DOCUMENT_BACKENDS)}")
    if not 0 <= settings['fee_basis_points'] <= 10000:
        errors.invalid_values.append("fee_basis_points must be between 0 and 10000")
    if settings['max_supply'] < 1:
        errors.invalid_values.append("max_supply must be at least 1")
    if settings['mint_cap_per_identity'] < 1:
        errors.invalid_values.append("mint_cap_per_identity must be at least 1")
    if settings['mint_window_seconds'] < 1:
        errors.invalid_values.append("mint_window_seconds must be at least 1 second")
    if settings['collateral_min_amount'] > settings['collateral_max_amount']:
        errors.invalid_values.append("collateral_min_amount must not exceed collateral_max_amount")
    if settings['wallet_timeout'] <= 0 or settings['broadcast_timeout'] <= 0:
        errors.invalid_values.append("wallet_timeout and broadcast_timeout must be positive")
    if settings['deposit_poll_interval'] <= 0:
        errors.invalid_values.append("deposit_poll_interval must be positive")
    if not settings['relays']:
        errors.missing.append('relays')

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return settings
