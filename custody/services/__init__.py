"""
Services.

Business logic layer: chain adapters, deposit detection, sweeping,
withdrawals and the orchestrating custody service.
"""

from custody.services.custody_service import CustodyService
from custody.services.factory import build_adapter, build_custody_service

__all__ = [
    "CustodyService",
    "build_adapter",
    "build_custody_service",
]
