"""Command line interface for checking the escrow wallet"""
import asyncio

from config import get_settings
from . import create_wallet, WalletConnectionError, WalletAuthError, WalletRequestError

async def check_wallet():
    """Print escrow wallet address, balance and spendable coins"""
    settings = get_settings()
    wallet = create_wallet(settings)

    try:
        print("\nEscrow wallet:")
        print("-" * 50)

        address = await wallet.get_address()
        print(f"Address: {address}")

        coins = await wallet.list_coins()
        print(f"Spendable coins: {len(coins)}")
        for coin in coins:
            in_range = settings['collateral_min_amount'] <= coin.amount <= settings['collateral_max_amount']
            marker = " (collateral)" if in_range else ""
            print(f"  {coin.id}  {coin.amount} sats{marker}")

        print(f"Spendable balance: {sum(c.amount for c in coins)} sats")

    except WalletConnectionError as e:
        print("\nFailed to connect to the wallet daemon:")
        print(f"  {str(e)}")

    except WalletAuthError as e:
        print("\nAuthentication failed:")
        print(f"  {str(e)}")
        print("\nPlease check wallet_rpc_user and wallet_rpc_password in settings.conf")

    except WalletRequestError as e:
        print(f"\nWallet Error [{e.code}] in {e.method}:")
        print(f"  {str(e)}")

if __name__ == "__main__":
    asyncio.run(check_wallet())
