"""EVM chain integration: ABI table, log decoding, JSON-RPC log source."""
