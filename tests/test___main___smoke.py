from __future__ import annotations

import runpy

import pytest


def test_main_module_delega_en_el_entrypoint(monkeypatch) -> None:
    monkeypatch.setattr("inmogestor.entrypoints.main.main", lambda: 0)

    with pytest.raises(SystemExit) as exit_info:
        runpy.run_module("inmogestor.__main__", run_name="__main__")

    assert exit_info.value.code == 0


def test_excepcion_inesperada_devuelve_codigo_2(monkeypatch, capsys) -> None:
    def _boom() -> int:
        raise RuntimeError("fallo")

    monkeypatch.setattr("inmogestor.entrypoints.main.main", _boom)
    monkeypatch.setattr("inmogestor.bootstrap.exception_handler.manejar_excepcion_global", lambda *_args: "INC-1")

    with pytest.raises(SystemExit) as exit_info:
        runpy.run_module("inmogestor.__main__", run_name="__main__")

    assert exit_info.value.code == 2
    assert "INC-1" in capsys.readouterr().err
