from __future__ import annotations

import os
from pathlib import Path

from tandem import paths


def test_platform_dirs_use_xdg_homes() -> None:
    expected_config = Path(os.environ["XDG_CONFIG_HOME"]) / "tandem"
    expected_state = Path(os.environ["XDG_STATE_HOME"]) / "tandem"

    assert paths.config_dir() == expected_config
    assert paths.log_dir().is_relative_to(expected_state)
    assert paths.config_dir().is_dir()


def test_xdg_config_home_is_isolated() -> None:
    config_home = os.environ.get("XDG_CONFIG_HOME", "")
    assert config_home, "XDG_CONFIG_HOME must be set in tests"
    assert str(paths.config_dir()).startswith(config_home)
