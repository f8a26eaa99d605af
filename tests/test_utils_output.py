"""Tests for utils/output.py: JSON and table rendering."""
import json
from pathlib import Path

from token_keeper.utils.output import OutputFormat, print_output


def test_json_output(capsys):
    print_output({"state": "valid", "seconds_remaining": 10}, OutputFormat.JSON)
    assert json.loads(capsys.readouterr().out) == {"state": "valid", "seconds_remaining": 10}


def test_json_output_serializes_non_json_values(capsys):
    print_output({"path": Path("/tmp/x")}, OutputFormat.JSON)
    assert json.loads(capsys.readouterr().out) == {"path": "/tmp/x"}


def test_table_output_goes_to_stderr(capsys):
    print_output({"state": "valid", "scopes": ["a", "b"], "expires_at": None}, OutputFormat.TABLE, title="Status")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "valid" in captured.err
