"""Encrypted credential storage."""

from minechat.services.secrets.store import SecretStore, get_secret_store, reset_secret_store

__all__ = ["SecretStore", "get_secret_store", "reset_secret_store"]
