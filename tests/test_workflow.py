"""Tests for workflow definition parsing."""

import json

import pytest

from flowquery.models import ActionCategory, classify_action
from flowquery.workflow import (
    MAX_NESTING_DEPTH,
    display_name,
    find_child_flow_references,
    parse_actions,
    parse_connection_references,
    parse_triggers,
    parse_workflow_definition,
)


class TestParseActions:
    def test_condition_flattens_to_four(self, condition_actions):
        parsed = parse_actions({"Check_status": condition_actions["Check_status"]})
        assert parsed.succeeded
        assert [node.id for node in parsed.flat] == ["Check_status", "Send_email", "Log_sent", "Log_skipped"]

    def test_tree_and_preorder(self, condition_actions):
        parsed = parse_actions(condition_actions)
        assert list(parsed.tree) == ["Get_contact", "Check_status"]
        assert [node.id for node in parsed.flat] == [
            "Get_contact", "Check_status", "Send_email", "Log_sent", "Log_skipped"]

        condition = parsed.tree["Check_status"]
        assert condition.category is ActionCategory.CONDITION
        assert condition.is_container
        assert [child.id for child in condition.children] == ["Send_email", "Log_sent"]
        assert [child.id for child in condition.else_children] == ["Log_skipped"]

    def test_run_after(self, condition_actions):
        parsed = parse_actions(condition_actions)
        nodes = {node.id: node for node in parsed.flat}
        assert nodes["Get_contact"].run_after == {}
        assert nodes["Check_status"].predecessors == ("Get_contact",)
        assert nodes["Send_email"].run_after is None
        assert nodes["Log_sent"].run_after == {"Send_email": ["Succeeded", "Failed"]}

    @pytest.mark.parametrize("raw", [None, [], "actions", 42, {}])
    def test_non_mapping_is_empty(self, raw):
        parsed = parse_actions(raw)
        assert parsed.succeeded
        assert parsed.tree == {}
        assert parsed.flat == []

    def test_non_mapping_entries_become_untyped_actions(self):
        parsed = parse_actions({"Odd": "not a dict"})
        assert parsed.flat[0].id == "Odd"
        assert parsed.flat[0].category is ActionCategory.UNKNOWN

    def test_non_string_type_and_kind(self):
        parsed = parse_actions({"A": {"type": 5}, "B": {"type": "Compose", "kind": 7}, "C": {"kind": 7}})
        assert parsed.error is None
        by_id = {node.id: node for node in parsed.flat}
        assert by_id["A"].type == "5"
        assert by_id["A"].category is ActionCategory.UNKNOWN
        assert by_id["B"].category is ActionCategory.DATA_OPERATION
        assert by_id["C"].kind == "7"
        assert by_id["C"].category is ActionCategory.UNKNOWN

    def test_switch_cases_and_default(self):
        parsed = parse_actions({
            "Route": {
                "type": "Switch",
                "expression": "@variables('kind')",
                "cases": {
                    "Case_A": {"case": "a", "actions": {"Handle_a": {"type": "Compose"}}},
                    "Case_B": {"case": "b", "actions": {"Handle_b": {"type": "Compose"}}},
                },
                "default": {"actions": {"Handle_other": {"type": "Compose"}}},
            },
        })
        route = parsed.tree["Route"]
        assert route.category is ActionCategory.SWITCH
        assert [(case.name, case.value) for case in route.cases] == [("Case_A", "a"), ("Case_B", "b")]
        assert [child.id for child in route.else_children] == ["Handle_other"]
        assert [node.id for node in parsed.flat] == ["Route", "Handle_a", "Handle_b", "Handle_other"]

    def test_loop_children(self):
        parsed = parse_actions({
            "Apply_to_each": {"type": "Foreach", "foreach": "@body('x')",
                              "actions": {"Inner": {"type": "Compose"}}},
        })
        assert parsed.tree["Apply_to_each"].category is ActionCategory.LOOP
        assert len(parsed.flat) == 2

    def test_nesting_at_limit(self, make_nested_actions):
        parsed = parse_actions(make_nested_actions(MAX_NESTING_DEPTH))
        assert parsed.succeeded
        assert len(parsed.flat) == MAX_NESTING_DEPTH

    def test_nesting_over_limit(self, make_nested_actions, caplog):
        parsed = parse_actions(make_nested_actions(MAX_NESTING_DEPTH + 1))
        assert not parsed.succeeded
        assert parsed.flat == []
        assert "nested deeper" in parsed.error
        assert "Could not parse actions" in caplog.text


class TestClassification:
    @pytest.mark.parametrize("action_type,kind,expected", [
        ("If", None, ActionCategory.CONDITION),
        ("Until", None, ActionCategory.LOOP),
        ("Workflow", None, ActionCategory.CHILD_FLOW),
        ("OpenApiConnection", None, ActionCategory.API_CALL),
        ("InitializeVariable", None, ActionCategory.VARIABLE),
        ("Custom", "Expression", ActionCategory.EXPRESSION),
        (None, None, ActionCategory.UNKNOWN),
        (5, 7, ActionCategory.UNKNOWN),
    ])
    def test_classify_action(self, action_type, kind, expected):
        assert classify_action(action_type, kind) is expected

    def test_display_name(self):
        assert display_name("Send_an_email") == "Send an email"


class TestWorkflowDefinition:
    def test_from_record(self, workflow_record):
        details = parse_workflow_definition(workflow_record)
        assert details.id == "3f1c2a9e-0000-0000-0000-000000000001"
        assert details.name == "Notify contact"
        assert details.description == "Emails active contacts"
        assert [trigger.id for trigger in details.triggers] == ["When_a_row_is_added"]
        assert len(details.flat) == 5
        assert details.error is None

    def test_from_clientdata_string(self, workflow_definition):
        details = parse_workflow_definition(json.dumps(workflow_definition), flow_id="flow-1")
        assert details.id == "flow-1"
        assert details.name == "flow-1"
        assert len(details.flat) == 5

    def test_from_bare_definition(self, workflow_definition):
        details = parse_workflow_definition(workflow_definition["properties"], name="Bare")
        assert details.name == "Bare"
        assert len(details.triggers) == 1

    def test_bad_clientdata(self, caplog):
        details = parse_workflow_definition({"workflowid": "x", "name": "Broken", "clientdata": "{not json"})
        assert details.flat == []
        assert details.triggers == []
        assert "Failed to parse flow definition" in caplog.text

    def test_missing_clientdata(self, caplog):
        details = parse_workflow_definition({"workflowid": "x", "name": "Empty"})
        assert details.name == "Empty"
        assert "No clientdata" in caplog.text

    def test_connection_references(self, connection_references):
        references = {ref.id: ref for ref in parse_connection_references(connection_references)}
        dataverse = references["shared_commondataserviceforapps"]
        assert dataverse.connector_name == "shared_commondataserviceforapps"
        assert dataverse.display_name == "Microsoft Dataverse"
        outlook = references["shared_office365"]
        assert outlook.connector_name == "shared_office365"
        assert outlook.connection_name == "new_office365"

    def test_triggers_ignore_non_mapping(self):
        assert parse_triggers(None) == []
        assert parse_triggers({"manual": None})[0].id == "manual"


class TestChildFlows:
    def test_unique_references(self):
        parsed = parse_actions({
            "Run_child": {"type": "Workflow", "inputs": {"host": {"workflowReferenceName": "child-1"}}},
            "Run_again": {"type": "Workflow", "inputs": {"host": {"workflowReferenceName": "child-1"}}},
            "Run_other": {"type": "Workflow", "inputs": {"host": {"workflowReferenceName": "child-2"}}},
            "Compose": {"type": "Compose"},
        })
        assert find_child_flow_references(parsed.flat) == ["child-1", "child-2"]
