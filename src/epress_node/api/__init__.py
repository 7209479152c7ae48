"""HTTP API for the epress node."""
