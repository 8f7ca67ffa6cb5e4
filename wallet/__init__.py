"""Wallet module for interacting with the custodial escrow wallet daemon.

The escrow wallet is an Ark coin-set wallet exposed over JSON-RPC. This module
wraps it twice:

- WalletRPC: a blocking JSON-RPC client built on requests, mapping transport
  failures and wallet error codes onto the WalletError hierarchy.
- EscrowWallet: the async adapter the rest of the service talks to. It runs
  every call in a worker thread under a client-side timeout and normalizes the
  wallet's coin shapes into a single Coin type.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

class WalletError(Exception):
    """Base exception for wallet errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"Wallet Error [{code}] in {method}: {message}" if code else message)

class WalletConnectionError(WalletError):
    """Raised when the wallet daemon cannot be reached or times out"""
    pass

class WalletAuthError(WalletError):
    """Raised when authentication against the wallet daemon failed"""
    pass

class WalletRequestError(WalletError):
    """Wallet daemon error codes and messages

    Common error codes:
    -1  - General error during processing
    -5  - Invalid parameter
    -6  - Insufficient funds
    -20 - Invalid address
    -25 - Error processing transaction
    -32 - Coin already spent
    -33 - Ark server unavailable
    """
    ERROR_MESSAGES = {
        -1: "General error during processing",
        -5: "Invalid parameter",
        -6: "Insufficient funds",
        -20: "Invalid address",
        -25: "Error processing transaction",
        -32: "Coin already spent",
        -33: "Ark server unavailable",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class WalletTimeoutError(WalletConnectionError):
    """Raised when a wallet call exceeds the configured client-side timeout"""
    pass

@dataclass(frozen=True)
class Coin:
    """A spendable coin held by the escrow wallet.

    Attributes:
        id: Outpoint reference in "txid:vout" form
        amount: Value in the base settlement unit (sats)
    """
    id: str
    amount: int

def _to_int(value: Any) -> int:
    """Convert the numeric shapes the wallet emits into an int."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        for key in ('total', 'confirmed', 'amount', 'value', 'sats'):
            if key in value:
                return _to_int(value[key])
    raise ValueError(f"Invalid amount: {value!r}")

def normalize_coin(raw: Dict[str, Any]) -> Coin:
    """Normalize a raw wallet coin into a Coin.

    Accepted shapes:
        {"txid": ..., "vout": ..., "value": ...}
        {"outpoint": {"txid": ..., "vout": ...}, "amount": ...}
        {"vtxo": {"outpoint": {...}, "amount": ...}}

    Args:
        raw: Coin as returned by the wallet daemon

    Returns:
        Normalized coin

    Raises:
        ValueError: If the coin has no usable outpoint
    """
    if 'vtxo' in raw and isinstance(raw['vtxo'], dict):
        raw = raw['vtxo']

    outpoint = raw.get('outpoint')
    if isinstance(outpoint, str) and ':' in outpoint:
        txid, vout = outpoint.rsplit(':', 1)
    else:
        outpoint = outpoint if isinstance(outpoint, dict) else {}
        txid = raw.get('txid') or outpoint.get('txid')
        vout = raw.get('vout', outpoint.get('vout', 0))

    if not txid:
        raise ValueError(f"Coin without outpoint: {raw!r}")

    amount = raw.get('value', raw.get('amount'))
    return Coin(id=f"{txid}:{int(vout)}", amount=_to_int(amount))

def is_spendable(raw: Dict[str, Any]) -> bool:
    """Check whether a raw coin can still be spent (not spent, not swept)."""
    if raw.get('isSpent') or raw.get('spent'):
        return False
    state = (raw.get('virtualStatus') or {}).get('state')
    return state != 'swept'

def normalize_balance(raw: Any) -> int:
    """Extract the available (spendable) amount from a balance response."""
    if isinstance(raw, dict):
        if 'available' in raw:
            return _to_int(raw['available'])
        if 'offchain' in raw:
            return normalize_balance(raw['offchain'])
    return _to_int(raw)

class RPCMethod:
    """Descriptor class for wallet RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args, **kwargs) -> Any:
            return obj._call_method(self.method_name, *args, **kwargs)

        return caller

class WalletRPC:
    """Blocking JSON-RPC client for the escrow wallet daemon"""

    def __init__(self, url: str, user: str = '', password: str = '', timeout: float = 10):
        """Initialize RPC client.

        Args:
            url: Wallet daemon RPC URL
            user: RPC user (optional)
            password: RPC password (optional)
            timeout: Per-request HTTP timeout in seconds
        """
        self.url = url
        self.timeout = timeout

        # Initialize session with auth
        self.session = requests.Session()
        if user:
            self.session.auth = (user, password)
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_id = 0

    def _get_request_id(self) -> int:
        """Get unique request ID"""
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the wallet daemon

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from the wallet

        Raises:
            WalletConnectionError: Connection to the wallet failed
            WalletAuthError: Authentication failed
            WalletRequestError: Wallet returned an error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": args,
            "id": self._get_request_id()
        }

        result = None
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            # Check for auth error
            if response.status_code == 401:
                raise WalletAuthError("Authentication failed - check wallet_rpc_user/wallet_rpc_password")

            # Try to parse response even if status code is error
            result = response.json()

            # Check for RPC error
            if 'error' in result and result['error'] is not None:
                error = result['error']
                raise WalletRequestError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -1),
                    method
                )

            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise WalletConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise WalletConnectionError(
                f"Failed to connect to wallet at {self.url}", method=method
            ) from e
        except requests.exceptions.HTTPError as e:
            raise WalletConnectionError(
                f"HTTP error occurred: {str(e)}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise WalletConnectionError(
                f"Request failed: {str(e)}", method=method
            ) from e
        except (KeyError, ValueError) as e:
            raise WalletConnectionError(
                f"Invalid response format: {str(e)}", method=method
            ) from e

    # Wallet methods
    getaddress = RPCMethod('getaddress')
    getpubkey = RPCMethod('getpubkey')
    getbalance = RPCMethod('getbalance')
    listvtxos = RPCMethod('listvtxos')
    sendoffchain = RPCMethod('sendoffchain')
    collaborativeexit = RPCMethod('collaborativeexit')

class EscrowWallet:
    """Async adapter over the escrow wallet.

    Every call runs WalletRPC in a worker thread bounded by `timeout`, so a
    hung daemon never blocks the event loop or a settlement indefinitely.
    """

    def __init__(self, rpc: WalletRPC, timeout: float = 20):
        self.rpc = rpc
        self.timeout = timeout

    async def _call(self, method: str, *args) -> Any:
        func = getattr(self.rpc, method)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Wallet call {method} timed out after {self.timeout}s")
            raise WalletTimeoutError(
                f"Wallet call timed out after {self.timeout} seconds", method=method
            ) from e

    async def get_address(self) -> str:
        """Get the escrow wallet's receive address."""
        return await self._call('getaddress')

    async def get_public_key(self) -> str:
        """Get the escrow wallet's x-only public key (hex)."""
        return await self._call('getpubkey')

    async def get_balance(self) -> int:
        """Get the spendable escrow balance in sats.

        The balance is summed from spendable coins rather than trusting the
        daemon's own `available` figure, which may include coins the Ark
        server will still reject.
        """
        coins = await self.list_coins()
        return sum(coin.amount for coin in coins)

    async def list_coins(self) -> List[Coin]:
        """List spendable escrow coins.

        Returns:
            Normalized coins; malformed entries are skipped with a warning
        """
        raw_coins = await self._call('listvtxos')
        coins = []
        for raw in raw_coins or []:
            if not isinstance(raw, dict) or not is_spendable(raw):
                continue
            try:
                coins.append(normalize_coin(raw))
            except ValueError as e:
                logger.warning(f"Skipping malformed wallet coin: {e}")
        return coins

    async def send(self, address: str, amount: int) -> str:
        """Send `amount` sats off-chain to `address`.

        Returns:
            Settlement transaction id
        """
        if amount <= 0:
            raise WalletError(f"Refusing to send non-positive amount {amount}", method='sendoffchain')
        result = await self._call('sendoffchain', address, amount)
        return result['txid'] if isinstance(result, dict) else str(result)

    async def exit(self, address: str, amount: int) -> str:
        """Exit `amount` sats to a base-layer address via collaborative exit."""
        result = await self._call('collaborativeexit', address, amount)
        return result['txid'] if isinstance(result, dict) else str(result)

def create_wallet(settings: Dict[str, Any]) -> EscrowWallet:
    """Build the escrow wallet adapter from settings."""
    rpc = WalletRPC(
        settings['wallet_rpc_url'],
        settings.get('wallet_rpc_user', ''),
        settings.get('wallet_rpc_password', ''),
        timeout=settings['wallet_timeout']
    )
    return EscrowWallet(rpc, timeout=settings['wallet_timeout'])

__all__ = [
    'WalletError',
    'WalletConnectionError',
    'WalletAuthError',
    'WalletRequestError',
    'WalletTimeoutError',
    'Coin',
    'normalize_coin',
    'normalize_balance',
    'is_spendable',
    'WalletRPC',
    'EscrowWallet',
    'create_wallet'
]
