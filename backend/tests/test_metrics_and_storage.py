"""
Tests for workflow metrics counters and local attachment storage.
"""
import os

import pytest

from app.models.workflow import UploadedFile
from app.services.workflow.file_storage import LocalFileStorage, clean_filename, validate_upload
from app.services.workflow.metrics import InMemoryWorkflowMetrics


class TestInMemoryWorkflowMetrics:
    def test_counts_by_label(self):
        metrics = InMemoryWorkflowMetrics()
        metrics.increment("transition_succeeded", operation="approve")
        metrics.increment("transition_succeeded", operation="approve")
        metrics.increment("transition_succeeded", operation="submit")

        assert metrics.count("transition_succeeded", operation="approve") == 2
        assert metrics.count("transition_succeeded") == 3
        assert metrics.snapshot() == {
            "transition_succeeded{operation=approve}": 2,
            "transition_succeeded{operation=submit}": 1,
        }

    def test_instances_are_independent(self):
        first, second = InMemoryWorkflowMetrics(), InMemoryWorkflowMetrics()
        first.increment("access_denied")

        assert first.snapshot() == {"access_denied": 1}
        assert second.snapshot() == {}


class TestFileNames:
    @pytest.mark.parametrize("raw,expected", [
        ("report.pdf", "report.pdf"),
        ("../../secret.txt", "secret.txt"),
        ("C:\\Users\\me\\plan.docx", "plan.docx"),
        ("", None),
        ("..", None),
        ("a\x00b.pdf", None),
        (None, None),
    ])
    def test_clean_filename(self, raw, expected):
        assert clean_filename(raw) == expected

    def test_size_limit(self):
        upload = UploadedFile(filename="big.bin", data=b"x" * 11)

        assert "maximum size" in validate_upload(upload, max_bytes=10)
        assert validate_upload(upload, max_bytes=11) is None

    def test_empty_file(self):
        assert "empty" in validate_upload(UploadedFile(filename="a.txt", data=b""))


class TestLocalFileStorage:
    def test_save_and_remove(self, tmp_path):
        storage = LocalFileStorage(str(tmp_path))

        stored = storage.save("report-1", UploadedFile(filename="Plan.PDF", data=b"abc", content_type="application/pdf"))

        assert stored.original_filename == "Plan.PDF"
        assert stored.stored_filename.endswith(".pdf")
        assert stored.file_size == 3
        assert os.path.dirname(stored.file_path) == os.path.join(str(tmp_path), "report-1")
        with open(stored.file_path, "rb") as handle:
            assert handle.read() == b"abc"

        storage.remove(stored.file_path)
        assert not storage.exists(stored.file_path)
        # Removing twice is harmless
        storage.remove(stored.file_path)

    def test_rejects_unusable_name(self, tmp_path):
        with pytest.raises(ValueError):
            LocalFileStorage(str(tmp_path)).save("r", UploadedFile(filename="..", data=b"x"))
