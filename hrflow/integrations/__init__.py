"""Integration provider factory."""

from __future__ import annotations

from typing import Dict, Optional

from ..contracts import IntegrationType
from .base import IntegrationProvider, IntegrationResult
from .mock import MockBackgroundCheckProvider, MockDocSearchProvider, MockESignatureProvider


def get_providers(
    overrides: Optional[Dict[IntegrationType, IntegrationProvider]] = None,
) -> Dict[IntegrationType, IntegrationProvider]:
    """Return one provider per integration type, mocks unless overridden."""

    providers: Dict[IntegrationType, IntegrationProvider] = {
        IntegrationType.DOCUSIGN: MockESignatureProvider(),
        IntegrationType.BACKGROUND_CHECK: MockBackgroundCheckProvider(),
        IntegrationType.DOC_SEARCH: MockDocSearchProvider(),
    }
    for integration_type, provider in (overrides or {}).items():
        providers[IntegrationType(integration_type)] = provider
    return providers


__all__ = [
    "IntegrationProvider",
    "IntegrationResult",
    "MockESignatureProvider",
    "MockBackgroundCheckProvider",
    "MockDocSearchProvider",
    "get_providers",
]
