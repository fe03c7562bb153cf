"""Command line interface for testing RPC functionality"""
import sys

from config import get_settings
from . import SolanaRPC, RPCError

def test_rpc(signature: str = None):
    """Check node health and optionally look up a transaction"""
    settings = get_settings()
    client = SolanaRPC(settings['solana_rpc_url'], timeout=settings['rpc_timeout'])
    try:
        print("\nTesting node connectivity:")
        print("-" * 50)
        print(f"  Health: {client.getHealth()}")
        print(f"  Slot: {client.getSlot()}")

        print("\nTreasury balance:")
        print("-" * 50)
        balance = client.get_token_balance(settings['treasury_token_account'])
        print(f"  {settings['treasury_token_account']}: {balance} smallest units")

        if signature:
            print(f"\nLooking up transaction {signature}:")
            print("-" * 50)
            tx = client.get_transaction(signature)
            if tx is None:
                print("  Not found (yet)")
            else:
                print(f"  Slot: {tx.get('slot')}")
                print(f"  Error: {tx.get('meta', {}).get('err')}")
    except RPCError as e:
        print(f"  RPC error: {e}")
        sys.exit(1)

if __name__ == "__main__":
    test_rpc(sys.argv[1] if len(sys.argv) > 1 else None)
