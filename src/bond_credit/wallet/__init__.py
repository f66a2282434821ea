"""NEAR wallets: key derivation, keystore, RPC and transfers."""
