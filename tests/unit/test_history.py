"""Tests for imagevault.core.history — per-user generation records."""

from unittest.mock import MagicMock

import pytest

from imagevault.core.errors import PathNotFound, PersistenceError
from imagevault.core.history import HistoryRecord, HistoryRecorder, paginate_records

BUCKET = "generated_images"


@pytest.fixture
def recorder(local_backend, test_config) -> HistoryRecorder:
    return HistoryRecorder(local_backend, test_config.history_table, BUCKET)


class TestHistoryRecord:
    """Tests for HistoryRecord.from_row."""

    def test_maps_image_path(self):
        record = HistoryRecord.from_row(
            {"id": "1", "user_id": "u1", "prompt": "p", "image_path": "u1/a.png", "created_at": "t"}
        )
        assert record.path == "u1/a.png"
        assert record.image_url is None

    def test_legacy_row_keeps_image_url(self):
        record = HistoryRecord.from_row(
            {"id": 7, "user_id": "u1", "prompt": "p", "image_url": "https://old/x.png"}
        )
        assert record.id == "7"
        assert record.path is None
        assert record.image_url == "https://old/x.png"
        assert record.created_at is None


class TestHistoryRecorder:
    """Tests for HistoryRecorder."""

    def test_record_stores_path_not_url(self, recorder, local_backend, test_config, auth_u1):
        record = recorder.record(auth_u1, "a red cube", "u1/a.png")

        assert record.user_id == "u1"
        assert record.prompt == "a red cube"
        assert record.path == "u1/a.png"
        rows = local_backend.select_rows(test_config.history_table, {"user_id": "u1"})
        assert len(rows) == 1
        assert rows[0]["image_path"] == "u1/a.png"
        assert rows[0]["image_url"] is None

    def test_list_newest_first(self, recorder, local_backend, test_config, auth_u1):
        table = test_config.history_table
        for prompt, created in [("old", "2024-01-01"), ("new", "2024-03-01"), ("mid", "2024-02-01")]:
            local_backend.insert_row(
                table, {"user_id": "u1", "prompt": prompt, "created_at": created}
            )

        assert [r.prompt for r in recorder.list_records(auth_u1)] == ["new", "mid", "old"]

    def test_list_is_scoped_to_caller(self, recorder, auth_u1, auth_u2):
        recorder.record(auth_u1, "mine", "u1/a.png")
        recorder.record(auth_u2, "theirs", "u2/b.png")

        assert [r.prompt for r in recorder.list_records(auth_u1)] == ["mine"]
        assert [r.prompt for r in recorder.list_records(auth_u2)] == ["theirs"]

    def test_get_other_users_record(self, recorder, auth_u1, auth_u2):
        record = recorder.record(auth_u1, "mine", "u1/a.png")
        with pytest.raises(PathNotFound, match="Image not found"):
            recorder.get_record(auth_u2, record.id)

    def test_delete_removes_row_and_object(self, recorder, local_backend, auth_u1):
        local_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        record = recorder.record(auth_u1, "p", "u1/a.png")

        deleted = recorder.delete_record(auth_u1, record.id)

        assert deleted.id == record.id
        assert recorder.list_records(auth_u1) == []
        assert not (local_backend.root / BUCKET / "u1" / "a.png").exists()

    def test_delete_other_users_record(self, recorder, local_backend, auth_u1, auth_u2):
        local_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        record = recorder.record(auth_u1, "p", "u1/a.png")

        with pytest.raises(PathNotFound):
            recorder.delete_record(auth_u2, record.id)
        assert (local_backend.root / BUCKET / "u1" / "a.png").exists()

    def test_delete_survives_object_removal_failure(self, auth_u1):
        backend = MagicMock()
        backend.select_rows.return_value = [
            {"id": "r1", "user_id": "u1", "prompt": "p", "image_path": "u1/a.png"}
        ]
        backend.remove.side_effect = RuntimeError("storage down")

        record = HistoryRecorder(backend, "generated_images", BUCKET).delete_record(auth_u1, "r1")

        assert record.id == "r1"
        backend.delete_rows.assert_called_once_with(
            "generated_images", {"id": "r1", "user_id": "u1"}
        )

    def test_record_failure_is_persistence_error(self, auth_u1):
        backend = MagicMock()
        backend.insert_row.side_effect = RuntimeError("db down")
        recorder = HistoryRecorder(backend, "generated_images", BUCKET)

        with pytest.raises(PersistenceError, match="Failed to save image to history"):
            recorder.record(auth_u1, "p", "u1/a.png")

    def test_list_failure_is_persistence_error(self, auth_u1):
        backend = MagicMock()
        backend.select_rows.side_effect = RuntimeError("db down")
        with pytest.raises(PersistenceError):
            HistoryRecorder(backend, "generated_images", BUCKET).list_records(auth_u1)


class TestPaginateRecords:
    """Tests for paginate_records."""

    def test_first_page(self):
        result = paginate_records(list(range(25)), page=1, per_page=10)
        assert result["total"] == 25
        assert result["pages"] == 3
        assert result["items"] == list(range(10))

    def test_last_partial_page(self):
        assert paginate_records(list(range(25)), page=3, per_page=10)["items"] == [20, 21, 22, 23, 24]

    def test_page_clamped_high(self):
        result = paginate_records(list(range(5)), page=9, per_page=2)
        assert result["page"] == 3
        assert result["items"] == [4]

    def test_page_clamped_low(self):
        assert paginate_records([1, 2], page=0, per_page=10)["page"] == 1

    def test_empty(self):
        result = paginate_records([], page=1, per_page=10)
        assert result["pages"] == 1
        assert result["items"] == []

    def test_per_page_floor(self):
        assert paginate_records([1, 2, 3], page=1, per_page=0)["per_page"] == 1
