# =============================================================================
# Unit Tests: Sync Ops
# =============================================================================

from unittest.mock import MagicMock, patch

import pytest
from bson import json_util
from dagster import build_op_context

from services.dagster.lake_pipelines.ops.sync_ops import (
    apply_change_batch,
    apply_change_batch_from_cursor,
    build_cursor,
    parse_cursor,
    read_change_batch,
)
from services.dagster.lake_pipelines.resources import MongoDBResource


T0 = json_util.dumps({"_data": "t0"})


def _stream(changes, resume_token=None):
    stream = MagicMock()
    stream.__enter__.return_value = stream
    stream.try_next.side_effect = list(changes) + [None]
    stream.resume_token = resume_token
    return stream


@pytest.fixture
def insert_change(mongo_resource, records):
    mongo_resource.put_entity("user", "u1", {"name": "Ada"})
    document = records.find_one({"_id": "entity#user#u1"})
    return {
        "operationType": "insert",
        "documentKey": {"_id": document["_id"]},
        "fullDocument": document,
    }


# =============================================================================
# Test: cursor handling
# =============================================================================

class TestCursor:
    def test_round_trip(self):
        token = {"_data": "8265F1A2B3000000012B022C0100296E5A1004"}
        assert parse_cursor(build_cursor(token)) == token

    @pytest.mark.parametrize("cursor", [None, "", "not json", "[1, 2]"])
    def test_unusable_cursor_starts_from_now(self, cursor):
        assert parse_cursor(cursor) is None

    def test_no_token_no_cursor(self):
        assert build_cursor(None) is None


# =============================================================================
# Test: reading the stream
# =============================================================================

class TestReadChangeBatch:
    def test_resumes_from_token(self, log):
        mongodb = MagicMock()
        mongodb.watch_records.return_value = _stream([], resume_token={"_data": "t1"})

        events, token = read_change_batch(mongodb, {"_data": "t0"}, 10, log)

        mongodb.watch_records.assert_called_once_with(resume_after={"_data": "t0"})
        assert events == []
        assert token == {"_data": "t1"}

    def test_stops_at_max_events(self, log):
        changes = [
            {"operationType": "delete", "documentKey": {"_id": f"entity#user#u{i}"}}
            for i in range(5)
        ]
        stream = _stream(changes)
        mongodb = MagicMock()
        mongodb.watch_records.return_value = stream

        events, _ = read_change_batch(mongodb, None, 3, log)

        assert [e.document_key for e in events] == ["entity#user#u0", "entity#user#u1", "entity#user#u2"]
        assert stream.try_next.call_count == 3

    def test_unsupported_operations_count_but_are_dropped(self, log):
        mongodb = MagicMock()
        mongodb.watch_records.return_value = _stream(
            [
                {"operationType": "drop"},
                {"operationType": "delete", "documentKey": {"_id": "entity#user#u1"}},
                {"operationType": "delete", "documentKey": {"_id": "entity#user#u2"}},
            ]
        )

        events, _ = read_change_batch(mongodb, None, 2, log)

        assert [e.document_key for e in events] == ["entity#user#u1"]
        log.error.assert_called_once()


# =============================================================================
# Test: applying a batch
# =============================================================================

class TestApplyChangeBatch:
    def test_replays_and_materializes(self, lake, mongo_resource, insert_change, log):
        stream = _stream([insert_change], resume_token={"_data": "t1"})

        with patch.object(MongoDBResource, "watch_records", return_value=stream) as watch:
            report = apply_change_batch_from_cursor(lake, mongo_resource, T0, 1, log)

        watch.assert_called_once_with(resume_after={"_data": "t0"})
        assert report["processed"] == 1
        assert report["routes"] == {"ENTITY_WRITE": 1}
        assert len(lake.keys("tables/user/")) == 1

    def test_failures_are_reported_not_raised(self, lake, mongo_resource, log):
        bad = {"operationType": "insert", "documentKey": {"_id": "x"}, "fullDocument": {"record_type": "mystery"}}
        stream = _stream([bad])

        with patch.object(MongoDBResource, "watch_records", return_value=stream):
            report = apply_change_batch_from_cursor(lake, mongo_resource, T0, 1, log)

        assert report["failed"] == 1
        log.warning.assert_called_once()

    def test_rejects_cursor_without_token(self, lake, mongo_resource, log):
        with pytest.raises(ValueError, match="resume token"):
            apply_change_batch_from_cursor(lake, mongo_resource, "", 1, log)

    def test_op(self, lake, mongo_resource, insert_change):
        stream = _stream([insert_change])
        context = build_op_context(resources={"minio": lake, "mongodb": mongo_resource})

        with patch.object(MongoDBResource, "watch_records", return_value=stream):
            report = apply_change_batch(context, T0, 1)

        assert report["processed"] == 1
