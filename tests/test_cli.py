from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from mimirprompt.scraper import cli, config
from mimirprompt.scraper.downloader import BatchDownloader
from mimirprompt.scraper.snapshot import SnapshotWriter, load_snapshot
from mimirprompt.scraper.store import SqliteStore
from tests.test_downloader import FakeResponse, FakeSession
from tests.test_reconciler import _record
from tests.test_store_sqlite import _configure_temp_paths


def _write_snapshot(cfg, records) -> None:
    SnapshotWriter(cfg.snapshot_path, cfg.source_url).flush(records, len(records))


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli._build_parser().parse_args([])


def test_config_error_exits_with_code_2(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    original = cli._config_from_args
    monkeypatch.setattr(
        cli,
        "_config_from_args",
        lambda args: dataclasses.replace(original(args), admin_email="", admin_password=""),
    )

    code = cli.main(["--data-dir", str(cfg.data_dir), "--store", "pocketbase", "import"])

    assert code == cli.EXIT_CONFIG
    assert "Configuration error" in capsys.readouterr().out


def test_import_command(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    _write_snapshot(cfg, [_record(1), _record(2), _record(2)])

    code = cli.main(["--data-dir", str(cfg.data_dir), "--store", "sqlite", "import"])

    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "Imported: 2" in out
    assert "Skipped: 1" in out
    assert SqliteStore(cfg.data_dir / "mimirprompt.db").count("prompts") == 2


def test_import_without_snapshot_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)

    code = cli.main(["--data-dir", str(cfg.data_dir), "--store", "sqlite", "import"])

    assert code == cli.EXIT_FAILED


def test_download_command_localizes_snapshot(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    _write_snapshot(cfg, [_record(1)])
    session = FakeSession({"https://cdn.example.com/1.jpg": [FakeResponse(200)]})
    monkeypatch.setattr(cli, "BatchDownloader", lambda c: BatchDownloader(c, session=session))

    code = cli.main(["--data-dir", str(cfg.data_dir), "download", "--concurrency", "2"])

    assert code == cli.EXIT_OK
    assert "Downloaded: 1" in capsys.readouterr().out
    assert (cfg.images_dir / "1_Harbour_1.jpg").is_file()
    record = load_snapshot(cfg.snapshot_path).records[0]
    assert record.thumbnail == "/images/1_Harbour_1.jpg"
    assert record.images == ["/images/1_Harbour_1.jpg"]


def test_data_dir_routes_run_logs_without_touching_module_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    cfg = _configure_temp_paths(tmp_path, monkeypatch)
    other_dir = tmp_path / "elsewhere"
    other_cfg = dataclasses.replace(cfg, snapshot_path=other_dir / "prompts.json")
    _write_snapshot(other_cfg, [_record(1)])

    code = cli.main(["--data-dir", str(other_dir), "--store", "sqlite", "import"])

    assert code == cli.EXIT_OK
    assert list((other_dir / "logs").glob("import_*.log"))
    assert config.LOG_DIR == cfg.data_dir / "logs"
    assert not list((cfg.data_dir / "logs").glob("import_*.log"))
