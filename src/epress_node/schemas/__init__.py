"""Pydantic schemas for the epress node API."""
