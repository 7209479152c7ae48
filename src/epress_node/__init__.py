"""epress node: attested federated publishing."""

__version__ = "0.1.0"
