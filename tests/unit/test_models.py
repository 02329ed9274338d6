import pytest
from pydantic import ValidationError

from flowweave.errors import InvalidStateTransition
from flowweave.models import (
    ExecutionRecord,
    ExecutionStatus,
    NodeDeclaration,
    NodeRuntimeState,
    NodeStatus,
    SkipReason,
    WorkflowDefinition,
)


def test_node_settings_from_editor_blocks():
    node = NodeDeclaration.model_validate(
        {
            "id": "fetch",
            "type": "http_request",
            "position": {"x": 10, "y": 20},
            "executionConfig": {"timeout": 5000, "retryCount": 1},
            "errorHandling": {"onError": "continue", "maxRetries": 3, "retryDelay": 250},
        }
    )

    assert node.settings.timeout == 5000
    assert node.settings.retry_count == 3
    assert node.settings.retry_delay == 250
    assert node.settings.on_error == "continue"


def test_node_settings_explicit_block_wins():
    node = NodeDeclaration.model_validate(
        {
            "id": "n",
            "type": "echo",
            "settings": {"retryCount": 2, "onError": "retry"},
            "errorHandling": {"onError": "continue"},
        }
    )

    assert node.settings.retry_count == 2
    assert node.settings.on_error == "retry"


def test_invalid_on_error_rejected():
    with pytest.raises(ValidationError):
        NodeDeclaration.model_validate(
            {"id": "n", "type": "echo", "settings": {"onError": "explode"}}
        )


def test_node_label_falls_back_to_id():
    assert NodeDeclaration(id="n1", type="echo").label == "n1"
    assert NodeDeclaration(id="n1", type="echo", name="Fetch").label == "Fetch"


def test_definition_json_roundtrip_keeps_credentials_and_ports():
    definition = WorkflowDefinition.model_validate(
        {
            "nodes": [
                {"id": "a", "type": "start"},
                {"id": "b", "type": "http_request", "credentialId": "cred-1"},
            ],
            "connections": [{"source": "a", "target": "b", "sourceHandle": "true"}],
        }
    )

    restored = WorkflowDefinition.from_json(definition.to_json())

    assert restored == definition
    assert restored.nodes[1].credential_id == "cred-1"
    assert restored.connections[0].source_port == "true"
    assert restored.connections[0].target_port == "input"


def test_definition_is_frozen():
    definition = WorkflowDefinition(nodes=[], connections=[])
    with pytest.raises(ValidationError):
        definition.nodes = []


def test_runtime_state_terminal_is_final():
    state = NodeRuntimeState(node_id="a")
    state.transition(NodeStatus.READY)
    state.transition(NodeStatus.RUNNING)
    state.transition(NodeStatus.SUCCEEDED)

    with pytest.raises(InvalidStateTransition):
        state.transition(NodeStatus.FAILED)
    assert state.status == NodeStatus.SUCCEEDED


def test_skip_reason_failure_classification():
    assert SkipReason.UPSTREAM_FAILED.is_failure
    assert SkipReason.HALTED.is_failure
    assert not SkipReason.BRANCH_NOT_TAKEN.is_failure
    assert not SkipReason.CANCELLED.is_failure


def test_execution_record_json_roundtrip():
    record = ExecutionRecord(
        execution_id="e1",
        workflow_id="wf",
        status=ExecutionStatus.SUCCESS,
        output_data={"b": {"output": 1}},
        node_states={"b": "succeeded"},
    )

    assert ExecutionRecord.from_json(record.to_json()) == record
