from __future__ import annotations

import json

import pytest

from agentpilot.cli import main, parse_args


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPERATION_MODE", raising=False)


def test_cli_json_output(capsys, tmp_path):
    code = main(["weather in London", "--mode", "autonomous", "--json", "--workspace", str(tmp_path)])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "completed"
    assert payload["tools_used"] == ["weather-service"]


def test_cli_text_output_shows_checkpoint(capsys, tmp_path):
    code = main(["weather in London", "--workspace", str(tmp_path)])
    out = capsys.readouterr().out
    assert code == 0
    assert "Status: processing" in out
    assert "Checkpoint: checkpoint-" in out
    assert "(low_confidence, medium)" in out


def test_cli_trace_flag_writes_trace(capsys, tmp_path):
    main(["weather in London", "--mode", "autonomous", "--trace", "--workspace", str(tmp_path)])
    out = capsys.readouterr().out
    assert "Trace: " in out
    assert list((tmp_path / "traces").glob("*.json"))


def test_cli_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        parse_args(["weather", "--mode", "reckless"])
