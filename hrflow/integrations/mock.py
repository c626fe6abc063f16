"""In-process mock providers used when no real provider is configured."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from ..contracts import IntegrationType
from .base import IntegrationProvider, IntegrationResult

MOCK_DOCUMENTS: List[Dict[str, Any]] = [
    {
        "name": "Employee Handbook 2025.pdf",
        "document_type": "handbook",
        "s3_key": "documents/handbooks/employee-handbook-2025.pdf",
        "file_type": "pdf",
        "file_size": 2048576,
    },
    {
        "name": "I-9 Employment Eligibility Form.pdf",
        "document_type": "form",
        "s3_key": "documents/forms/i9-form.pdf",
        "file_type": "pdf",
        "file_size": 524288,
    },
    {
        "name": "W-4 Tax Withholding Form.pdf",
        "document_type": "form",
        "s3_key": "documents/forms/w4-form.pdf",
        "file_type": "pdf",
        "file_size": 409600,
    },
    {
        "name": "Code of Conduct.pdf",
        "document_type": "policy",
        "s3_key": "documents/policies/code-of-conduct.pdf",
        "file_type": "pdf",
        "file_size": 312000,
    },
]


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


class MockESignatureProvider(IntegrationProvider):
    """Pretends to send a DocuSign envelope."""

    integration_type = IntegrationType.DOCUSIGN

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def invoke(self, step_id: str, payload: Dict[str, Any]) -> IntegrationResult:
        await asyncio.sleep(self.latency)
        envelope_id = f"mock-env-{_short_id()}"
        return IntegrationResult(
            success=True,
            external_id=envelope_id,
            response={
                "envelope_id": envelope_id,
                "status": "sent",
                "sent_at": datetime.now(timezone.utc).isoformat(),
                "signer_email": payload.get("signer_email"),
                "document_type": payload.get("document_type"),
            },
        )


class MockBackgroundCheckProvider(IntegrationProvider):
    """Pretends to initiate a background check."""

    integration_type = IntegrationType.BACKGROUND_CHECK

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency

    async def invoke(self, step_id: str, payload: Dict[str, Any]) -> IntegrationResult:
        await asyncio.sleep(self.latency)
        check_id = f"mock-check-{_short_id()}"
        return IntegrationResult(
            success=True,
            external_id=check_id,
            response={
                "check_id": check_id,
                "status": "in-progress",
                "candidate": payload.get("candidate"),
                "check_types": payload.get("check_types", ["criminal", "employment"]),
                "initiated_at": datetime.now(timezone.utc).isoformat(),
            },
        )


class MockDocSearchProvider(IntegrationProvider):
    """Searches a small fixed document catalogue."""

    integration_type = IntegrationType.DOC_SEARCH

    def __init__(self, documents: List[Dict[str, Any]] | None = None) -> None:
        self.documents = documents if documents is not None else MOCK_DOCUMENTS

    async def invoke(self, step_id: str, payload: Dict[str, Any]) -> IntegrationResult:
        query = str(payload.get("query", "")).lower()
        document_type = payload.get("document_type")
        limit = int(payload.get("limit", 10))

        matches = [
            doc
            for doc in self.documents
            if (not query or query in doc["name"].lower() or query in doc["document_type"])
            and (not document_type or doc["document_type"] == document_type)
        ][:limit]
        return IntegrationResult(
            success=True,
            external_id=f"mock-search-{_short_id()}",
            response={"total_count": len(matches), "documents": matches},
        )
