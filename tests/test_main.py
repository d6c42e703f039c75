"""Tests for the errorpipe CLI."""

import json

import pytest

from main import build_parser, main


class TestBuildParser:
    def test_capture_defaults(self):
        args = build_parser().parse_args(["capture", "hello"])
        assert args.command == "capture"
        assert args.message == "hello"
        assert args.level == "info"
        assert args.offline is False
        assert args.adapter == "console"

    def test_prune_requires_max_age(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["prune"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_adapter_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--adapter", "sentry", "stats"])


class TestCommands:
    def test_offline_capture_then_flush(self, tmp_path, capsys, monkeypatch):
        for key in ("ERRORPIPE_ENVIRONMENT", "ERRORPIPE_ENABLE_OFFLINE", "ERRORPIPE_STORAGE_PATH"):
            monkeypatch.delenv(key, raising=False)
        state = str(tmp_path / "state.json")
        output = tmp_path / "errors.jsonl"
        common = ["--storage", state, "--adapter", "jsonl", "--output", str(output)]

        assert main(common + ["capture", "checkout failed", "--level", "error", "--offline"]) == 0
        captured = json.loads(capsys.readouterr().out)
        assert captured["message"] == "checkout failed"
        assert captured["network"] == {"is_online": False}
        assert not output.exists() or output.read_text() == ""

        assert main(["--storage", state, "stats"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["queue"]["queue_size"] == 1
        assert report["metrics"]["queue"]["total_errors"] == 1

        assert main(common + ["flush"]) == 0
        assert "remaining=0" in capsys.readouterr().out
        lines = output.read_text().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["checkout failed"]

    def test_prune(self, tmp_path, capsys):
        state = str(tmp_path / "state.json")
        assert main(["--storage", state, "capture", "old news", "--offline"]) == 0
        capsys.readouterr()
        assert main(["--storage", state, "prune", "--max-age", "3600"]) == 0
        assert "Pruned 0" in capsys.readouterr().out

    def test_invalid_level_fails(self, tmp_path):
        state = str(tmp_path / "state.json")
        assert main(["--storage", state, "capture", "x", "--level", "loud"]) == 1

    def test_invalid_config_fails(self, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("sample_rate: 7\n")
        assert main(["--config", str(config), "--storage", str(tmp_path / "s.json"), "stats"]) == 1
