"""Shared fixtures for the flowquery test suite."""

import json

import matplotlib

matplotlib.use("Agg")

import pytest


@pytest.fixture
def condition_actions():
    """A condition with two true-branch children and one else child."""
    return {
        "Get_contact": {
            "type": "OpenApiConnection",
            "inputs": {
                "host": {"connectionName": "shared_commondataserviceforapps", "operationId": "GetItem"},
                "parameters": {"entityName": "contacts", "recordId": "@triggerBody()?['contactid']"},
            },
            "runAfter": {},
        },
        "Check_status": {
            "type": "If",
            "expression": {"equals": ["@outputs('Get_contact')?['statecode']", 0]},
            "runAfter": {"Get_contact": ["Succeeded"]},
            "actions": {
                "Send_email": {
                    "type": "OpenApiConnection",
                    "inputs": {"host": {"connectionName": "shared_office365", "operationId": "SendEmailV2"}},
                },
                "Log_sent": {
                    "type": "Compose",
                    "inputs": "sent",
                    "runAfter": {"Send_email": ["Succeeded", "Failed"]},
                },
            },
            "else": {
                "actions": {
                    "Log_skipped": {"type": "Compose", "inputs": "skipped"},
                },
            },
        },
    }


@pytest.fixture
def connection_references():
    return {
        "shared_commondataserviceforapps": {
            "api": {"name": "shared_commondataserviceforapps"},
            "connection": {"connectionReferenceLogicalName": "new_dataverse"},
            "displayName": "Microsoft Dataverse",
        },
        "shared_office365": {
            "connectorName": "shared_office365",
            "connectionName": "new_office365",
            "displayName": "Office 365 Outlook",
        },
    }


@pytest.fixture
def workflow_definition(condition_actions, connection_references):
    return {
        "properties": {
            "connectionReferences": connection_references,
            "definition": {
                "triggers": {
                    "When_a_row_is_added": {
                        "type": "OpenApiConnectionWebhook",
                        "inputs": {"host": {"connectionName": "shared_commondataserviceforapps"}},
                    },
                },
                "actions": condition_actions,
            },
        },
    }


@pytest.fixture
def workflow_record(workflow_definition):
    return {
        "workflowid": "3f1c2a9e-0000-0000-0000-000000000001",
        "name": "Notify contact",
        "description": "Emails active contacts",
        "clientdata": json.dumps(workflow_definition),
    }


def nested_actions(depth):
    """A chain of scopes ``depth`` levels deep."""
    actions = {"Leaf": {"type": "Compose", "inputs": "x"}}
    for level in range(depth - 1, 0, -1):
        actions = {f"Scope_{level}": {"type": "Scope", "actions": actions}}
    return actions


@pytest.fixture
def make_nested_actions():
    return nested_actions
