"""Chain access: RPC endpoint pool, retries and contract gateway."""
