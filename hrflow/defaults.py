"""Built-in template catalogue seeded by ``hrflow template seed``."""

from __future__ import annotations

from typing import Any, Dict, List

STANDARD_ONBOARDING: Dict[str, Any] = {
    "name": "standard-onboarding",
    "description": "Generic employee onboarding from offer letter to first week",
    "workflow_type": "onboarding",
    "steps": [
        {
            "key": "send-offer",
            "name": "Send Offer Letter",
            "step_type": "integration",
            "stage": "pre-boarding",
            "integration_type": "docusign",
            "integration_config": {"document_type": "offer-letter"},
            "due_days": 1,
        },
        {
            "key": "sign-offer",
            "name": "Offer Letter Signed",
            "step_type": "document",
            "stage": "pre-boarding",
            "assigned_role": "employee",
            "dependencies": ["send-offer"],
            "due_days": 5,
        },
        {
            "key": "background-check",
            "name": "Initiate Background Check",
            "step_type": "integration",
            "stage": "pre-boarding",
            "integration_type": "background_check",
            "integration_config": {"check_types": ["criminal", "employment"]},
            "dependencies": ["sign-offer"],
            "due_days": 7,
        },
        {
            "key": "send-i9",
            "name": "Send I-9 Form",
            "step_type": "integration",
            "stage": "pre-boarding",
            "integration_type": "docusign",
            "integration_config": {"document_type": "i9"},
            "dependencies": ["sign-offer"],
            "due_days": 7,
        },
        {
            "key": "it-setup",
            "name": "IT Setup - Laptop Configuration",
            "stage": "day-1",
            "assigned_role": "it",
            "dependencies": ["background-check"],
            "due_days": 10,
        },
        {
            "key": "welcome",
            "name": "Send Welcome Email",
            "stage": "day-1",
            "assigned_role": "manager",
            "dependencies": ["sign-offer"],
            "due_days": 10,
        },
        {
            "key": "handbook",
            "name": "Fetch Onboarding Documents",
            "step_type": "integration",
            "stage": "week-1",
            "integration_type": "doc_search",
            "integration_config": {"query": "handbook", "limit": 5},
            "dependencies": ["welcome"],
            "due_days": 14,
        },
        {
            "key": "benefits",
            "name": "Benefits Enrollment",
            "step_type": "approval",
            "stage": "week-1",
            "assigned_role": "employee",
            "required": False,
            "dependencies": ["welcome"],
            "due_days": 14,
        },
    ],
}

STANDARD_OFFBOARDING: Dict[str, Any] = {
    "name": "standard-offboarding",
    "description": "Generic employee offboarding",
    "workflow_type": "offboarding",
    "steps": [
        {
            "key": "manager-approval",
            "name": "Manager Approval",
            "step_type": "approval",
            "stage": "notice",
            "assigned_role": "manager",
            "due_days": 2,
        },
        {
            "key": "exit-paperwork",
            "name": "Send Exit Paperwork",
            "step_type": "integration",
            "stage": "notice",
            "integration_type": "docusign",
            "integration_config": {"document_type": "separation-agreement"},
            "dependencies": ["manager-approval"],
            "due_days": 5,
        },
        {
            "key": "knowledge-transfer",
            "name": "Knowledge Transfer",
            "stage": "last-week",
            "assigned_role": "manager",
            "dependencies": ["manager-approval"],
            "due_days": 10,
        },
        {
            "key": "revoke-access",
            "name": "Revoke System Access",
            "stage": "last-day",
            "assigned_role": "it",
            "dependencies": ["knowledge-transfer"],
            "due_days": 14,
        },
        {
            "key": "exit-interview",
            "name": "Exit Interview",
            "stage": "last-day",
            "required": False,
            "dependencies": ["manager-approval"],
            "due_days": 14,
        },
    ],
}

BUILTIN_TEMPLATES: List[Dict[str, Any]] = [STANDARD_ONBOARDING, STANDARD_OFFBOARDING]
