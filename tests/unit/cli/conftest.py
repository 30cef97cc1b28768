"""Fixtures for CLI tests: route ragkb.cli.common to tmp config + fake gateways."""

from __future__ import annotations

import pytest

from ragkb.cli import common


@pytest.fixture
def use_config(monkeypatch, make_config, make_runtime):
    """Factory: make the CLI load the returned config and build fake runtimes."""

    def _use(targets: tuple[str, ...] = ("t1",), missing_archive: tuple[str, ...] = ()):
        cfg = make_config(targets, missing_archive=missing_archive)
        monkeypatch.setattr(common, "load", lambda: cfg)
        monkeypatch.setattr(common, "make_runtime", make_runtime)
        return cfg

    return _use
