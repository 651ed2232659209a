# =============================================================================
# Unit Tests: Task Ops
# =============================================================================

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pyarrow as pa
import pytest
from pymongo.errors import AutoReconnect

from libs.models import DELETION_QUEUE, QueueMessage, TaskRecord, TaskStatus, TaskType
from libs.normalization import table_to_parquet_bytes
from libs.query_rewrite import QueryRewriteError
from libs.s3_utils import query_result_key

from services.dagster.lake_pipelines.ops.task_ops import (
    advance_task,
    get_task_result,
    run_deletion_task,
    trigger_task,
)
from services.dagster.lake_pipelines.resources import MongoDBResource
from services.dagster.lake_pipelines.resources.query_engine_resource import ExecutionStatus


FINISHED = datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.submit_statement.return_value = "run-1"
    engine.get_execution_status.return_value = ExecutionStatus("run-1", TaskStatus.RUNNING)
    return engine


def _store_result(lake, task_id, rows):
    lake.objects[query_result_key(task_id)] = table_to_parquet_bytes(pa.Table.from_pylist(rows))


def _deletion_task(mongodb, task_id="run-1"):
    mongodb.insert_task(
        TaskRecord(task_id=task_id, task_type=TaskType.DELETION, owner_operation_name="purgeFollows")
    )


# =============================================================================
# Test: trigger_task
# =============================================================================

class TestTriggerTask:
    def test_query_task_is_recorded_running(self, engine, mongo_resource, log):
        task_id = trigger_task(
            engine,
            mongo_resource,
            "SELECT * FROM follows f WHERE f.since > $args.since",
            owner_operation_name="listFollows",
            arguments={"since": "2024-01-01T00:00:00Z"},
            log=log,
        )

        assert task_id == "run-1"
        submitted = engine.submit_statement.call_args.args[0]
        assert submitted == "SELECT * FROM follows f WHERE f.since > '2024-01-01T00:00:00Z'"

        task = mongo_resource.get_task("run-1")
        assert task.status is TaskStatus.RUNNING
        assert task.task_type is TaskType.QUERY
        assert task.owner_operation_name == "listFollows"
        assert task.statement == submitted

    def test_delete_statement_becomes_deletion_task(self, engine, mongo_resource, log):
        trigger_task(
            engine,
            mongo_resource,
            "DELETE f FROM $join_table(follows) f WHERE f.since < $args.cutoff",
            owner_operation_name="purgeFollows",
            arguments={"cutoff": "2020-01-01T00:00:00Z"},
            log=log,
        )

        submitted = engine.submit_statement.call_args.args[0]
        assert submitted.startswith("SELECT f.artifactLocation, f.relationId FROM follows f")
        assert engine.submit_statement.call_args.kwargs["tags"]["task_type"] == "deletion_task"
        assert mongo_resource.get_task("run-1").task_type is TaskType.DELETION

    def test_malformed_delete_is_rejected_before_submit(self, engine, mongo_resource, log):
        with pytest.raises(QueryRewriteError):
            trigger_task(engine, mongo_resource, "DELETE FROM follows", owner_operation_name="op", log=log)

        engine.submit_statement.assert_not_called()
        assert mongo_resource.get_task("run-1") is None

    def test_engine_rejection_records_nothing(self, engine, mongo_resource, log):
        engine.submit_statement.side_effect = RuntimeError("launch failed")

        with pytest.raises(RuntimeError):
            trigger_task(engine, mongo_resource, "SELECT 1", owner_operation_name="op", log=log)

        assert mongo_resource.get_task("run-1") is None


# =============================================================================
# Test: advance_task
# =============================================================================

class TestAdvanceTask:
    def test_status_is_monotonic(self, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))

        assert advance_task(mongo_resource, "run-1", TaskStatus.FAILED, FINISHED, log) is True
        assert advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log) is False
        assert mongo_resource.get_task("run-1").status is TaskStatus.FAILED

    def test_succeeded_deletion_enqueues_once(self, mongo_resource, log):
        _deletion_task(mongo_resource)

        advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)
        advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        messages = mongo_resource.receive_messages(DELETION_QUEUE)
        assert [m.body for m in messages] == [{"task_id": "run-1"}]

    def test_failed_enqueue_is_repaired_by_the_next_report(self, mongo_resource, log):
        _deletion_task(mongo_resource)
        original_enqueue = MongoDBResource.enqueue
        attempts = []

        def flaky_enqueue(self, *args, **kwargs):
            attempts.append(args)
            if len(attempts) == 1:
                raise AutoReconnect("primary stepped down")
            return original_enqueue(self, *args, **kwargs)

        with patch.object(MongoDBResource, "enqueue", flaky_enqueue):
            with pytest.raises(AutoReconnect):
                advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)
            assert mongo_resource.get_task("run-1").deletion_pending

            assert advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log) is False
            advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        messages = mongo_resource.receive_messages(DELETION_QUEUE)
        assert [m.body for m in messages] == [{"task_id": "run-1"}]
        assert not mongo_resource.get_task("run-1").deletion_pending

    def test_acked_deletion_is_not_queued_again(self, mongo_resource, log):
        _deletion_task(mongo_resource)
        advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)
        message = mongo_resource.receive_messages(DELETION_QUEUE)[0]
        assert mongo_resource.ack_message(message.message_id) is True

        advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        assert mongo_resource.receive_messages(DELETION_QUEUE) == []

    def test_failed_deletion_enqueues_nothing(self, mongo_resource, log):
        _deletion_task(mongo_resource)

        advance_task(mongo_resource, "run-1", TaskStatus.FAILED, FINISHED, log)

        assert mongo_resource.receive_messages(DELETION_QUEUE) == []

    def test_succeeded_query_enqueues_nothing(self, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))

        advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        assert mongo_resource.receive_messages(DELETION_QUEUE) == []


# =============================================================================
# Test: get_task_result
# =============================================================================

class TestGetTaskResult:
    def test_unknown_task(self, engine, lake, mongo_resource, log):
        assert get_task_result(engine, lake, mongo_resource, "nope", log) is None

    def test_running_task_stays_running(self, engine, lake, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)

        assert result.task.status is TaskStatus.RUNNING
        assert result.rows is None

    def test_poll_completes_query_and_returns_rows(self, engine, lake, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))
        engine.get_execution_status.return_value = ExecutionStatus("run-1", TaskStatus.SUCCEEDED, FINISHED)
        _store_result(lake, "run-1", [{"id": "u1"}, {"id": "u2"}])

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)

        assert result.task.status is TaskStatus.SUCCEEDED
        assert result.task.finish_time == FINISHED
        assert result.rows == [{"id": "u1"}, {"id": "u2"}]

    def test_engine_error_leaves_task_running(self, engine, lake, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))
        engine.get_execution_status.side_effect = httpx.ConnectError("refused")

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)

        assert result.task.status is TaskStatus.RUNNING
        log.warning.assert_called_once()

    def test_poll_queues_a_missed_deletion(self, engine, lake, mongo_resource, log):
        _deletion_task(mongo_resource)
        with patch.object(MongoDBResource, "enqueue", side_effect=AutoReconnect("down")):
            with pytest.raises(AutoReconnect):
                advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)

        engine.get_execution_status.assert_not_called()
        assert result.task.deletion_enqueued_at is not None
        assert [m.body for m in mongo_resource.receive_messages(DELETION_QUEUE)] == [{"task_id": "run-1"}]

    def test_terminal_task_does_not_poll(self, engine, lake, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))
        advance_task(mongo_resource, "run-1", TaskStatus.FAILED, FINISHED, log)

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)

        assert result.task.status is TaskStatus.FAILED
        engine.get_execution_status.assert_not_called()

    def test_push_after_poll_enqueues_once(self, engine, lake, mongo_resource, log):
        _deletion_task(mongo_resource)
        engine.get_execution_status.return_value = ExecutionStatus("run-1", TaskStatus.SUCCEEDED, FINISHED)

        result = get_task_result(engine, lake, mongo_resource, "run-1", log)
        pushed = advance_task(mongo_resource, "run-1", TaskStatus.SUCCEEDED, FINISHED, log)

        assert result.task.status is TaskStatus.SUCCEEDED
        assert result.rows is None
        assert pushed is False
        assert len(mongo_resource.receive_messages(DELETION_QUEUE)) == 1


# =============================================================================
# Test: run_deletion_task
# =============================================================================

class TestRunDeletionTask:
    def _message(self, body):
        return QueueMessage(message_id="m1", queue=DELETION_QUEUE, body=body)

    def test_purges_selected_relations(self, lake, mongo_resource, log):
        _deletion_task(mongo_resource)
        location = "s3://data-lake/tables/follows/year=2019/month=05/day=01/" + "a" * 32 + ".parquet"
        lake.objects[location.removeprefix("s3://data-lake/")] = b"PAR1"
        _store_result(lake, "run-1", [{"artifactLocation": location, "relationId": "a" * 32}])

        report = run_deletion_task(lake, mongo_resource, self._message({"task_id": "run-1"}), log)

        assert report.ok
        assert report.relation_ids == ["a" * 32]
        assert report.artifacts_deleted == 1
        assert lake.keys("tables/") == []

    def test_empty_selection(self, lake, mongo_resource, log):
        _deletion_task(mongo_resource)
        empty = pa.table({"artifactLocation": pa.array([], pa.string()), "relationId": pa.array([], pa.string())})
        lake.objects[query_result_key("run-1")] = table_to_parquet_bytes(empty)

        report = run_deletion_task(lake, mongo_resource, self._message({"task_id": "run-1"}), log)

        assert report.relation_ids == []
        assert report.ok

    @pytest.mark.parametrize("body", [{}, {"task_id": "missing"}])
    def test_unactionable_messages(self, lake, mongo_resource, log, body):
        assert run_deletion_task(lake, mongo_resource, self._message(body), log) is None

    def test_query_task_is_not_a_deletion(self, lake, mongo_resource, log):
        mongo_resource.insert_task(TaskRecord(task_id="run-1", owner_operation_name="op"))

        assert run_deletion_task(lake, mongo_resource, self._message({"task_id": "run-1"}), log) is None
