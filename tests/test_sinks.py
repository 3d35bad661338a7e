from __future__ import annotations

from unittest import mock

import pytest
import requests

from trackly.errors import SinkError
from trackly.sinks import FileSink, RemoteSink


class TestFileSink:
    def test_write_then_read(self, tmp_path):
        sink = FileSink(tmp_path / "nested" / "sync")
        assert sink.write("snapshot", {"version": "2.0", "projects": []})
        assert sink.read("snapshot") == {"version": "2.0", "projects": []}
        assert [p.name for p in sink.directory.iterdir()] == ["snapshot.json"]

    def test_missing_key_reads_none(self, tmp_path):
        assert FileSink(tmp_path).read("absent") is None

    def test_invalid_json_raises(self, tmp_path):
        (tmp_path / "snapshot.json").write_text("[1, 2", encoding="utf-8")
        with pytest.raises(SinkError):
            FileSink(tmp_path).read("snapshot")

    def test_non_object_raises(self, tmp_path):
        (tmp_path / "snapshot.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(SinkError):
            FileSink(tmp_path).read("snapshot")

    def test_unwritable_directory_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        assert FileSink(blocker / "sync").write("snapshot", {}) is False

    @pytest.mark.parametrize("key", ["../escape", "a/b", ".hidden", ""])
    def test_rejects_unsafe_keys(self, tmp_path, key):
        with pytest.raises(ValueError):
            FileSink(tmp_path).write(key, {})


class TestRemoteSink:
    def make_sink(self):
        session = mock.Mock(spec=requests.Session)
        return RemoteSink("http://trackly.local:3001/", timeout=2.5, session=session), session

    def test_write_posts_payload(self):
        sink, session = self.make_sink()
        session.post.return_value = mock.Mock(ok=True, status_code=200)

        assert sink.write("snapshot", {"version": "2.0"}) is True
        session.post.assert_called_once_with(
            "http://trackly.local:3001/api/save-sync/snapshot",
            json={"version": "2.0"},
            timeout=2.5,
        )

    def test_write_connection_error_returns_false(self):
        sink, session = self.make_sink()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        assert sink.write("snapshot", {}) is False

    def test_write_http_error_returns_false(self):
        sink, session = self.make_sink()
        session.post.return_value = mock.Mock(ok=False, status_code=500)
        assert sink.write("snapshot", {}) is False

    def test_read_returns_payload(self):
        sink, session = self.make_sink()
        response = mock.Mock(status_code=200)
        response.json.return_value = {"version": "2.0"}
        session.get.return_value = response

        assert sink.read("snapshot") == {"version": "2.0"}
        session.get.assert_called_once_with(
            "http://trackly.local:3001/api/sync-files/snapshot", timeout=2.5
        )

    def test_read_404_is_none(self):
        sink, session = self.make_sink()
        session.get.return_value = mock.Mock(status_code=404)
        assert sink.read("snapshot") is None

    def test_read_timeout_raises_sink_error(self):
        sink, session = self.make_sink()
        session.get.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(SinkError):
            sink.read("snapshot")

    def test_read_server_error_raises_sink_error(self):
        sink, session = self.make_sink()
        response = mock.Mock(status_code=500)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("500")
        session.get.return_value = response
        with pytest.raises(SinkError):
            sink.read("snapshot")
