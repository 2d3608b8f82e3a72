#!/usr/bin/env python3
"""
fhevmclient Installation Verification Script
============================================

This script verifies that fhevmclient and its runtime stack are installed,
then runs one encrypt / sign / decrypt round trip on the local mock chain.
"""

import asyncio


def verify_installation():
    """Verify fhevmclient installation and the mock-chain flow"""

    print("fhevmclient Installation Verification")
    print("=" * 40)

    # Test 1: Basic import
    try:
        import fhevmclient
        print("✓ fhevmclient package import: SUCCESS")
    except ImportError as e:
        print(f"✗ fhevmclient package import: FAILED - {e}")
        print("  Solution: pip install -e .")
        return False

    # Test 2: Runtime stack
    for module_name, package in [("httpx", "httpx"), ("eth_account", "eth-account"),
                                 ("eth_utils", "eth-utils"), ("cryptography", "cryptography"),
                                 ("pandas", "pandas"), ("numpy", "numpy")]:
        try:
            module = __import__(module_name)
            print(f"✓ {package}: {getattr(module, '__version__', 'available')}")
        except ImportError:
            print(f"✗ {package}: NOT AVAILABLE")
            print(f"  Solution: pip install {package}")
            return False

    # Test 3: Mock chain round trip
    try:
        values = asyncio.run(_mock_round_trip())
        print(f"✓ Mock chain round trip: {values}")
    except Exception as e:
        print(f"✗ Mock chain round trip: FAILED - {e}")
        return False

    print("\n" + "=" * 40)
    print("Installation Status: SUCCESS")
    return True


async def _mock_round_trip():
    from fhevmclient import FhevmSession, LocalAccountSigner

    session = FhevmSession()
    outcome = await session.get_instance("http://localhost:8545", chain_id=31337)
    signer = LocalAccountSigner.create()
    contract = "0x" + "aa" * 20
    enc = await session.encrypt_with(contract, signer, lambda b: b.add_bool(True).add32(5).add64(1000000))
    try:
        return await session.user_decrypt([(h, contract) for h in enc.hex_handles], signer)
    finally:
        await session.close()


def print_quick_start():
    """Print quick start instructions"""
    print("\nQuick Start:")
    print("-" * 20)
    print("1. Configure a production network:")
    print("   export FHEVM_CHAIN_ID=... FHEVM_RELAYER_URL=... FHEVM_ENGINE_SOURCE=module:attr")
    print()
    print("2. Run the test suite:")
    print("   pytest tests/")


if __name__ == "__main__":
    success = verify_installation()

    if success:
        print_quick_start()
    else:
        print("\nInstallation Issues Detected!")
        print("Please check the solutions above")
        exit(1)
