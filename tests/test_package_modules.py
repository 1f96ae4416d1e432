from __future__ import annotations

import logging
import runpy

import klinewatch
import klinewatch.data as data_mod
import klinewatch.domain as domain_mod
import klinewatch.strategies as strategies_mod
import klinewatch.streaming as streaming_mod
import klinewatch.web as web_mod
from klinewatch.logging_config import LOG_FORMAT, configure_logging


def test_top_level_package_exports() -> None:
    assert "Settings" in klinewatch.__all__
    assert "MarketSession" in klinewatch.__all__
    assert isinstance(klinewatch.__version__, str)


def test_reexport_modules() -> None:
    assert "BinanceHistoryLoader" in data_mod.__all__
    assert "HistoryProvider" in data_mod.__all__
    assert "Bar" in domain_mod.__all__
    assert "StreamClient" in streaming_mod.__all__
    assert "MovingAverageCrossStrategy" in strategies_mod.__all__
    assert "create_app" in web_mod.__all__


def test_configure_logging_uses_uppercase_level(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_basic_config(**kwargs) -> None:
        captured.update(kwargs)

    monkeypatch.setattr(logging, "basicConfig", _fake_basic_config)
    configure_logging("debug")
    assert captured["level"] == "DEBUG"
    assert captured["format"] == LOG_FORMAT


def test_main_module_invokes_cli_main(monkeypatch) -> None:
    called = {"count": 0}

    def _fake_main() -> None:
        called["count"] += 1

    monkeypatch.setattr("klinewatch.cli.main", _fake_main)
    runpy.run_module("klinewatch.__main__", run_name="__main__")
    assert called["count"] == 1
