"""Helpers shared by the ragkb commands."""

from __future__ import annotations

import json
from typing import Any

import typer

from ragkb.config import RagKbConfig, load_config
from ragkb.log import quiet_logging
from ragkb.runtime import Runtime


def split_csv(value: str | None) -> list[str]:
    """``"a, b,,c"`` → ``["a", "b", "c"]``."""
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def load() -> RagKbConfig:
    return load_config()


def make_runtime(cfg: RagKbConfig) -> Runtime:
    return Runtime(cfg)


def enter_json_mode() -> None:
    """Silence progress logging so stdout carries only the JSON result."""
    quiet_logging()


def emit_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
