from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from rich import print
from rich.markup import escape

from tenax.config import load_config
from tenax.fs_paths import resolve_project_root
from tenax.memory import ProjectMemory


def memory_from_root(project_root: str | None) -> ProjectMemory:
    root = resolve_project_root(project_root)
    return ProjectMemory(root, config=load_config(root))


def print_json(data: Any) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def fail(message: str) -> typer.Exit:
    print(f"[red]{escape(message)}[/red]")
    return typer.Exit(code=1)


def read_payload_or_exit(payload: str | None, payload_file: Path | None) -> str:
    if payload is not None:
        return payload
    if payload_file is not None:
        try:
            return payload_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise fail(f"Failed to read {payload_file}: {exc}") from exc
    if sys.stdin.isatty():
        raise fail("Provide --json, --json-file, or pipe JSON to stdin")
    data = sys.stdin.read()
    if not data.strip():
        raise fail("Empty batch payload")
    return data
