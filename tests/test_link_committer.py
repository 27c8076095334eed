"""
LinkCommitter クラスのユニットテスト
"""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from callmatch.link_committer import LinkCommitter, LinkNotFoundError
from callmatch.models import CallRecord, CandidateRecord
from callmatch.storage import SQLiteStorage


CALL_TIME = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
USER_ID = "user-1"


@pytest.fixture
def storage():
    """通話1件とCSV行2件を登録したストレージ"""
    with tempfile.TemporaryDirectory() as tmpdir:
        storage = SQLiteStorage(os.path.join(tmpdir, "test.db"))
        for csv_id in ("csv-1", "csv-2"):
            storage.save_csv_call(
                USER_ID,
                CandidateRecord(id=csv_id, call_time=CALL_TIME, direction="Outbound"),
            )
        now = datetime.now(timezone.utc)
        storage.save_call(CallRecord(
            id="call-1",
            user_id=USER_ID,
            call_time=CALL_TIME,
            phone_number=None,
            duration_seconds=None,
            csv_call_id=None,
            created_at=now,
            updated_at=now,
        ))
        yield storage


@pytest.fixture
def committer(storage):
    return LinkCommitter(storage)


class TestCommit:
    """commit() のテスト"""

    def test_commit_creates_link(self, committer):
        link = committer.commit("call-1", "csv-1", USER_ID)

        assert link.call_id == "call-1"
        assert link.csv_call_id == "csv-1"
        assert committer.get_link("call-1").csv_call_id == "csv-1"

    def test_commit_is_idempotent(self, committer):
        first = committer.commit("call-1", "csv-1", USER_ID)
        second = committer.commit("call-1", "csv-1", USER_ID)

        assert second == first

    def test_relink_replaces(self, committer, storage):
        committer.commit("call-1", "csv-1", USER_ID)
        committer.commit("call-1", "csv-2", USER_ID)

        assert storage.get_call("call-1").csv_call_id == "csv-2"
        assert committer.get_link("call-1").csv_call_id == "csv-2"

    def test_unknown_call_raises(self, committer):
        with pytest.raises(LinkNotFoundError) as exc_info:
            committer.commit("missing", "csv-1", USER_ID)
        assert exc_info.value.call_id == "missing"

    def test_other_users_call_raises(self, committer):
        with pytest.raises(LinkNotFoundError):
            committer.commit("call-1", "csv-1", "user-2")

    def test_unknown_csv_row_raises(self, committer, storage):
        with pytest.raises(LinkNotFoundError):
            committer.commit("call-1", "csv-missing", USER_ID)
        assert storage.get_call("call-1").csv_call_id is None


class TestGetLink:
    """get_link() のテスト"""

    def test_unlinked_call(self, committer):
        assert committer.get_link("call-1") is None

    def test_unknown_call(self, committer):
        assert committer.get_link("missing") is None
