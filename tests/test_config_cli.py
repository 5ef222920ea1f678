"""Tests for keeper.config_cli."""

from __future__ import annotations

import pathlib

import pytest

import keeper.config
import keeper.config_cli
import keeper.engine.config  # noqa: F401
import keeper.hooks.config  # noqa: F401


class TestCmdList:
    def test_lists_keeper_and_hooks(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert keeper.config_cli.cmd_list() == 0
        out = capsys.readouterr().out
        assert "[keeper]" in out
        assert "[hooks]" in out
        assert "gate_patterns" in out

    def test_mode_lists_its_choices(self, capsys: pytest.CaptureFixture[str]) -> None:
        keeper.config_cli.cmd_list()
        mode_line = next(
            line for line in capsys.readouterr().out.splitlines() if "mode:" in line
        )
        assert mode_line.endswith("(seeding | growth | conservation)")


class TestCmdGet:
    def test_get_default(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert keeper.config_cli.cmd_get("keeper.mode", tmp_path) == 0
        assert capsys.readouterr().out.strip() == "growth"

    def test_invalid_format(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert keeper.config_cli.cmd_get("no_dot", tmp_path) == 1
        assert "Invalid key format" in capsys.readouterr().err

    def test_unknown_key(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert keeper.config_cli.cmd_get("keeper.bogus", tmp_path) == 1


class TestCmdSetReset:
    def test_set_get_reset(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        rc = keeper.config_cli.cmd_set(
            "keeper.promotion_threshold", "3", global_flag=False, root=tmp_path
        )
        assert rc == 0
        assert "Set keeper.promotion_threshold = 3" in capsys.readouterr().out
        assert keeper.config.get_effective("keeper", "promotion_threshold", tmp_path) == 3

        rc = keeper.config_cli.cmd_reset(
            "keeper.promotion_threshold", global_flag=False, root=tmp_path
        )
        assert rc == 0
        assert keeper.config.get_effective("keeper", "promotion_threshold", tmp_path) == 2

    def test_set_unknown_key(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        rc = keeper.config_cli.cmd_set(
            "keeper.nope", "1", global_flag=False, root=tmp_path
        )
        assert rc == 1
        assert "Unknown key" in capsys.readouterr().err

    @pytest.mark.parametrize(
        ("key", "value", "reason"),
        [
            ("keeper.mode", "chaos", "unknown mode"),
            ("keeper.promotion_threshold", "0", "at least 1"),
            ("keeper.promotion_threshold", "two", "expected int"),
            ("hooks.gate_patterns", "^bd create,(unclosed", "bad gate pattern"),
        ],
    )
    def test_set_rejects_invalid_values(
        self,
        tmp_path: pathlib.Path,
        capsys: pytest.CaptureFixture[str],
        key: str,
        value: str,
        reason: str,
    ) -> None:
        assert keeper.config_cli.cmd_set(key, value, global_flag=False, root=tmp_path) == 1
        assert reason in capsys.readouterr().err
        assert not (tmp_path / ".keeper" / "config.toml").exists()

    def test_set_mode(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        rc = keeper.config_cli.cmd_set(
            "keeper.mode", "conservation", global_flag=False, root=tmp_path
        )
        assert rc == 0
        assert 'Set keeper.mode = "conservation" (local)' in capsys.readouterr().out

    def test_reset_without_override(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert keeper.config_cli.cmd_reset("keeper.mode", global_flag=True, root=tmp_path) == 0
        assert "keeper.mode has no global override" in capsys.readouterr().out


class TestMain:
    def test_no_subcmd(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert keeper.config_cli.main([]) == 1

    def test_show_via_main(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert keeper.config_cli.main(["show", "--path", str(tmp_path)]) == 0
        out = capsys.readouterr().out
        assert 'mode = "growth"' in out.splitlines()
        assert "gate_enabled = true" in out.splitlines()

    def test_show_marks_overrides(
        self, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        keeper.config.set_value("keeper", "mode", "seeding", root=tmp_path)
        keeper.config.set_value("hooks", "gate_enabled", "no", scope="global")
        assert keeper.config_cli.main(["show", "--path", str(tmp_path)]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert 'mode = "seeding"  # local' in lines
        assert "gate_enabled = false  # global" in lines
        assert "promotion_threshold = 2" in lines
