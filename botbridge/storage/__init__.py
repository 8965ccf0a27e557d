"""Storage module - Session credential persistence."""

from botbridge.storage.credentials import CredentialStore, session_key

__all__ = ["CredentialStore", "session_key"]
