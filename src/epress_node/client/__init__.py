"""Client-side helpers for talking to an epress node."""
