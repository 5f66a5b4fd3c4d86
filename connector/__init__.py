"""Backend connectors for the clinic booking client."""

from __future__ import annotations

from .clinic_client import AuthSession, ClinicAPIClient
from .memory import CancellationRecord, InMemoryClinicBackend

__all__ = [
    "AuthSession",
    "CancellationRecord",
    "ClinicAPIClient",
    "InMemoryClinicBackend",
]
