"""Pairing-code issuance and ephemeral session broker."""

from .api import create_app
from .manager import PairingBroker

__all__ = ["create_app", "PairingBroker"]
