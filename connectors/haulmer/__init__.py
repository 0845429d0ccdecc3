"""Haulmer DTE registry connector.

Provides:
- HaulmerClient: export download and period listing with one auth retry
- HaulmerApiConfig: tenant, workspace and endpoint configuration
- DocumentType / ResourceDescriptor / RawPayload: registry models
"""

from connectors.haulmer.client import HaulmerClient, HaulmerApiConfig
from connectors.haulmer.models import (
    DocumentType,
    ResourceDescriptor,
    ResourceKind,
    RawPayload,
    PeriodListing,
)

__all__ = [
    "HaulmerClient",
    "HaulmerApiConfig",
    "DocumentType",
    "ResourceDescriptor",
    "ResourceKind",
    "RawPayload",
    "PeriodListing",
]
