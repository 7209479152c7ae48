# src/epress_node/services/__init__.py
"""Business logic services for the epress node."""
