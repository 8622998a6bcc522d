import pytest

from packdesk.core.errors import InvalidArgumentError, InvalidStateError
from packdesk.packs.operations import (
    InMemoryOperationRegistry,
    Operation,
    OperationStatus,
    OperationType,
)



@pytest.fixture()
def registry():
    return InMemoryOperationRegistry()



def test_create_starts_queued(registry):
    op = registry.create("op_1", OperationType.PACK_APPLY, "alice", message="queued up")
    assert op.status is OperationStatus.QUEUED
    assert op.progress == 0
    assert op.startedAt is None and op.completedAt is None
    assert not op.isTerminal

    with pytest.raises(InvalidArgumentError, match="already exists"):
        registry.create("op_1", OperationType.PACK_APPLY, "alice")
    with pytest.raises(InvalidStateError):
        registry.create("op_2", OperationType.PACK_APPLY, "alice", status=OperationStatus.RUNNING)



def test_full_lifecycle(registry):
    registry.create("op_1", OperationType.PACK_INSTALL, "alice")

    running = registry.start("op_1")
    assert running.status is OperationStatus.RUNNING
    assert running.message == "Running"
    assert running.startedAt is not None

    assert registry.setProgress("op_1", 150).progress == 100
    assert registry.setProgress("op_1", -3, "rewound").progress == 0

    done = registry.complete("op_1", "All good", {"installed": ["base"]})
    assert done.status is OperationStatus.SUCCESS
    assert done.progress == 100
    assert done.completedAt is not None
    assert done.resultData == {"installed": ["base"]}
    assert done.isTerminal



@pytest.mark.parametrize(
    "moves, target",
    [
        ([], OperationStatus.SUCCESS),
        ([], OperationStatus.FAILED),
        (["start", "complete"], OperationStatus.RUNNING),
        (["start", "complete"], OperationStatus.FAILED),
        (["start", "fail"], OperationStatus.SUCCESS),
        (["start", "fail"], OperationStatus.QUEUED),
        (["start"], OperationStatus.QUEUED),
    ],
)
def test_illegal_transitions(registry, moves, target):
    registry.create("op_1", OperationType.PACK_APPLY, "alice")
    for move in moves:
        if move == "start":
            registry.start("op_1")
        elif move == "complete":
            registry.complete("op_1", "done")
        else:
            registry.fail("op_1", "broke")

    with pytest.raises(InvalidStateError, match="cannot move from"):
        registry.update("op_1", status=target, message="x")



def test_terminal_records_reject_progress(registry):
    registry.create("op_1", OperationType.PACK_APPLY, "alice")
    registry.start("op_1")
    registry.fail("op_1", "broke")
    with pytest.raises(InvalidStateError):
        registry.setProgress("op_1", 50)



def test_fail_requires_message(registry):
    registry.create("op_1", OperationType.PACK_APPLY, "alice")
    registry.start("op_1")
    with pytest.raises(InvalidArgumentError, match="without a message"):
        registry.fail("op_1", "   ")
    assert registry.get("op_1").status is OperationStatus.RUNNING



def test_unknown_operation(registry):
    assert registry.get("nope") is None
    with pytest.raises(InvalidArgumentError, match="'nope' not found"):
        registry.start("nope")



def test_get_returns_copies(registry):
    registry.create("op_1", OperationType.PACK_APPLY, "alice", message="original")
    snapshot = registry.get("op_1")
    snapshot.message = "changed"
    assert registry.get("op_1").message == "original"



def test_list_filters_and_limits(registry):
    registry.create("op_1", OperationType.PACK_APPLY, "alice")
    registry.create("op_2", OperationType.PACK_REMOVE, "bob")
    registry.create("op_3", OperationType.PACK_INSTALL, "alice")

    assert [op.operationId for op in registry.list()] == ["op_3", "op_2", "op_1"]
    assert [op.operationId for op in registry.list(userId="alice")] == ["op_3", "op_1"]
    assert [op.operationId for op in registry.list(limit=1)] == ["op_3"]
    assert registry.list(userId="carol") == []



def test_toDict_uses_wire_names(registry):
    registry.create("op_1", OperationType.PACK_APPLY, "alice")
    data = registry.get("op_1").toDict()
    assert data["operation_id"] == "op_1"
    assert data["type"] == "pack_apply"
    assert data["status"] == "queued"
    assert data["user_id"] == "alice"
    assert data["result_data"] is None
    assert {"created_at", "updated_at", "started_at", "completed_at"} <= set(data)

    again = Operation.model_validate(data)
    assert again.operationId == "op_1"



def test_operation_model_rejects_bad_progress():
    with pytest.raises(ValueError):
        Operation(operationId="x", type="pack_apply", userId="alice", progress=101)
