from __future__ import annotations

import argparse

import pytest

import vinyl_catalog
from vinyl_catalog import build_parser, main, parse_display_scale


def test_parse_display_scale() -> None:
    assert parse_display_scale("2") == 2.0
    assert parse_display_scale("2.1, 2.0") == (2.1, 2.0)
    with pytest.raises(argparse.ArgumentTypeError):
        parse_display_scale("1,2,3")


def test_parser_reads_rectify_options() -> None:
    args = build_parser().parse_args(["--rectify", "r1", "--corners", "0,0,10,0,10,10,0,10",
                                      "--display-scale", "1.5"])

    assert args.rectify == "r1"
    assert args.display_scale == 1.5


def test_multiple_modes_are_rejected() -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--analyze-pending", "--test-connection"])

    assert "multiple mode flags" in str(exc.value)


def test_no_mode_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "--analyze-pending" in capsys.readouterr().out


def test_rectify_needs_corners() -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--rectify", "cover.jpg"])

    assert "--corners" in str(exc.value)


def test_export_dispatch(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(vinyl_catalog, "export_workflow", lambda path, settings: calls.append(path))

    assert main(["--export", "out.csv"]) == 0
    assert calls == ["out.csv"]
