"""Mock provider tests."""

import pytest

from hrflow.contracts import IntegrationType
from hrflow.integrations import (
    MockBackgroundCheckProvider,
    MockDocSearchProvider,
    MockESignatureProvider,
    get_providers,
)


@pytest.mark.asyncio
async def test_esignature_mock_returns_envelope():
    result = await MockESignatureProvider().invoke(
        "step-1", {"signer_email": "new.hire@example.com", "document_type": "offer-letter"}
    )
    assert result.success
    assert result.external_id.startswith("mock-env-")
    assert result.response["signer_email"] == "new.hire@example.com"


@pytest.mark.asyncio
async def test_background_check_mock_defaults_check_types():
    result = await MockBackgroundCheckProvider().invoke("step-1", {"candidate": "emp-1"})
    assert result.external_id.startswith("mock-check-")
    assert result.response["check_types"] == ["criminal", "employment"]


@pytest.mark.asyncio
async def test_doc_search_filters_catalogue():
    provider = MockDocSearchProvider()
    forms = await provider.invoke("step-1", {"document_type": "form"})
    assert forms.response["total_count"] == 2

    handbook = await provider.invoke("step-1", {"query": "handbook"})
    assert [d["document_type"] for d in handbook.response["documents"]] == ["handbook"]

    limited = await provider.invoke("step-1", {"limit": 1})
    assert limited.response["total_count"] == 1


def test_get_providers_overrides():
    custom = MockDocSearchProvider(documents=[])
    providers = get_providers({"doc_search": custom})
    assert providers[IntegrationType.DOC_SEARCH] is custom
    assert isinstance(providers[IntegrationType.DOCUSIGN], MockESignatureProvider)
