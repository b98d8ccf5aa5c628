"""Safe meta-transaction redemption of resolved CTF positions."""
