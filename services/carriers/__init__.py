"""Carrier clients for the Thai shipping providers."""

from .base import CarrierClient
from .kerry_client import KerryExpressClient
from .flash_client import FlashExpressClient, sign_payload
from .thailand_post_client import ThailandPostClient

__all__ = [
    "CarrierClient",
    "KerryExpressClient",
    "FlashExpressClient",
    "ThailandPostClient",
    "sign_payload",
]
