"""Operational entry points (``python -m epress_node.scripts.<name>``)."""
