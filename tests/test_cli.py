import json
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tenax import __version__
from tenax.cli import app, main

runner = CliRunner()

SCENARIO = "[DECISION: database] Use SQLite\n\n[TASK: high] Add tests"


@pytest.fixture
def root_args(project_root: Path) -> list[str]:
    return ["--project-root", str(project_root)]


@pytest.fixture
def transcript(make_transcript) -> Path:
    return make_transcript(("assistant", SCENARIO))


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    commands = (
        "init",
        "capture",
        "search",
        "batch",
        "complete-task",
        "forget",
        "stats",
        "summary",
        "sessions",
        "tag-session",
    )
    for command in commands:
        assert command in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_main_runs_the_app(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    monkeypatch.setattr(sys, "argv", ["tenax", "version"])

    with pytest.raises(SystemExit) as exit_info:
        main()

    assert exit_info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_init_twice(root_args: list[str]) -> None:
    first = runner.invoke(app, ["init", *root_args])
    second = runner.invoke(app, ["init", *root_args])

    assert first.exit_code == 0
    assert "Initialized memory" in first.stdout
    assert second.exit_code == 0
    assert "already initialized" in second.stdout


def test_capture_transcript_argument(root_args: list[str], transcript: Path) -> None:
    result = runner.invoke(app, ["capture", str(transcript), *root_args])

    assert result.exit_code == 0
    assert "Captured session 001" in result.stdout


def test_capture_reads_hook_input_from_stdin(root_args: list[str], transcript: Path) -> None:
    hook = json.dumps({"transcript_path": str(transcript), "session_id": "hook-1"})

    result = runner.invoke(app, ["capture", "--json", *root_args], input=hook)

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["metadata"]["claudeSessionId"] == "hook-1"
    assert [d["topic"] for d in data["decisions"]] == ["database"]


def test_capture_without_transcript_fails(root_args: list[str]) -> None:
    result = runner.invoke(app, ["capture", *root_args], input="")

    assert result.exit_code == 1
    assert "transcript" in result.stdout


def test_search_json(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    result = runner.invoke(app, ["search", "Use SQLite", "--json", "-k", "3", *root_args])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data[0]["type"] == "decision"
    assert data[0]["content"]["topic"] == "database"


def test_search_rejects_unknown_type(root_args: list[str]) -> None:
    result = runner.invoke(app, ["search", "database", "--type", "note", *root_args])

    assert result.exit_code == 1
    assert "Search failed" in result.stdout


def test_batch_from_option_and_stdin(root_args: list[str]) -> None:
    payload = json.dumps({"tasks": [{"title": "Ship it", "priority": "high"}]})

    from_option = runner.invoke(app, ["batch", "--json", payload, *root_args])
    from_stdin = runner.invoke(app, ["batch", *root_args], input=payload)

    assert from_option.exit_code == 0
    assert json.loads(from_option.stdout)["tasks"] == 1
    assert from_stdin.exit_code == 0
    assert json.loads(from_stdin.stdout)["duplicates"] == 1


def test_batch_from_file(root_args: list[str], tmp_path: Path) -> None:
    batch_file = tmp_path / "batch.json"
    batch_file.write_text(json.dumps({"insights": [{"content": "Cache was stale"}]}))

    result = runner.invoke(app, ["batch", "--json-file", str(batch_file), *root_args])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["insights"] == 1


def test_batch_errors(root_args: list[str]) -> None:
    invalid = runner.invoke(app, ["batch", "--json", "{nope", *root_args])
    empty = runner.invoke(app, ["batch", *root_args], input="")

    assert invalid.exit_code == 1
    assert "invalid batch json" in invalid.stdout
    assert empty.exit_code == 1
    assert "Empty batch payload" in empty.stdout


def test_complete_task_and_unknown_task(root_args: list[str]) -> None:
    runner.invoke(app, ["batch", "--json", json.dumps({"tasks": [{"title": "Ship"}]}), *root_args])
    stats = json.loads(runner.invoke(app, ["stats", "--json", *root_args]).stdout)
    assert stats["tasks"] == {"pending": 1, "completed": 0}

    missing = runner.invoke(app, ["complete-task", "missing", *root_args])

    assert missing.exit_code == 1
    assert "not found" in missing.stdout


def test_forget_json(root_args: list[str]) -> None:
    result = runner.invoke(app, ["forget", "missing-id", "--json", *root_args])

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "removed": [],
        "missing": ["missing-id"],
        "vectors_removed": 0,
    }


def test_reextract(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    missing_args = runner.invoke(app, ["reextract", *root_args])
    unknown = runner.invoke(app, ["reextract", "404", *root_args])
    result = runner.invoke(app, ["reextract", "001", "--json", *root_args])

    assert missing_args.exit_code == 1
    assert unknown.exit_code == 1
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["metadata"]["id"] == "001"


def test_prune_and_stats(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    pruned = runner.invoke(app, ["prune", *root_args])
    stats = runner.invoke(app, ["stats", "--json", *root_args])

    assert pruned.exit_code == 0
    assert "Pruned 0 sessions" in pruned.stdout
    data = json.loads(stats.stdout)
    assert data["sessions"] == {"total": 1, "stored": 1}
    assert data["vectors"]["total"] == 3


def test_project_root_defaults_to_environment(project_root: Path, transcript: Path) -> None:
    result = runner.invoke(app, ["capture", str(transcript)])

    assert result.exit_code == 0
    assert (project_root / ".claude" / "tenax" / "index.json").exists()


def test_search_sessions_type(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    result = runner.invoke(app, ["search", "database", "--type", "session", "--json", *root_args])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert [hit["id"] for hit in data] == ["session-001"]
    assert data[0]["content"]["id"] == "001"


def test_summary_json_and_text(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    as_json = runner.invoke(app, ["summary", "--json", *root_args])
    as_text = runner.invoke(app, ["summary", *root_args])

    assert as_json.exit_code == 0
    data = json.loads(as_json.stdout)
    assert data["stats"]["sessions"] == 1
    assert [t["title"] for t in data["pending_tasks"]] == ["Add tests"]
    assert data["top_topics"] == [{"topic": "database", "count": 1}]
    assert as_text.exit_code == 0
    assert "[high] Add tests" in as_text.stdout


def test_sessions_json(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    result = runner.invoke(app, ["sessions", "1", "--json", *root_args])
    starved = runner.invoke(app, ["sessions", "--budget", "1", *root_args])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["requested"] == ["001"]
    assert data["sessions"][0]["metadata"]["id"] == "001"
    assert starved.exit_code == 0
    assert "Loaded 0 of 1 sessions" in starved.stdout


def test_tag_session(root_args: list[str], transcript: Path) -> None:
    runner.invoke(app, ["capture", str(transcript), *root_args])

    added = runner.invoke(app, ["tag-session", "001", "backend", "urgent", *root_args])
    removed = runner.invoke(app, ["tag-session", "001", "urgent", "--remove", *root_args])
    unknown = runner.invoke(app, ["tag-session", "404", "x", *root_args])

    assert added.exit_code == 0
    assert "Tags added to session 001: backend, urgent" in added.stdout
    assert removed.exit_code == 0
    assert "Tags removed from session 001: backend" in removed.stdout
    assert unknown.exit_code == 1
    assert "Session 404 not found" in unknown.stdout
