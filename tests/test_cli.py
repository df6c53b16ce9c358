# tests/test_cli.py

import json
import logging

import pytest

from cli import EXIT_FAILURE, EXIT_SUCCESS, build_orchestrator, main_cli
from config import SystemConfig
from core.database import GalleryDatabase


@pytest.fixture
def config_path(tmp_path):
    config = SystemConfig()
    config.database_path = str(tmp_path / "data" / "gallery.db")
    config.log_dir = str(tmp_path / "logs")
    config.processing.show_progress = False
    path = tmp_path / "config.yaml"
    config.save(str(path))

    yield str(path)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, '_gallery_intel', False):
            root.removeHandler(handler)
            handler.close()


def test_scan_process_and_group(config_path, image_dir, tmp_path):
    assert main_cli(['--config', config_path, 'scan', str(image_dir)]) == EXIT_SUCCESS
    assert main_cli(['--config', config_path, 'process', '--type', 'duplicates',
                     '--batch-size', '2']) == EXIT_SUCCESS

    output = tmp_path / "groups.json"
    report = tmp_path / "groups.html"
    assert main_cli(['--config', config_path, 'duplicates', '--strategy', 'prefix_bucket',
                     '-o', str(output), '-r', str(report)]) == EXIT_SUCCESS

    groups = json.loads(output.read_text())
    assert len(groups) == 1
    assert groups[0]['representative']['path'].endswith("a_ramp.png")
    assert groups[0]['members'][0]['path'].endswith("b_ramp_copy.png")
    assert report.exists()


def test_compare(config_path, image_dir, capsys):
    code = main_cli(['--config', config_path, 'compare',
                     str(image_dir / "a_ramp.png"), str(image_dir / "c_reverse.png")])

    assert code == EXIT_SUCCESS
    out = capsys.readouterr().out
    assert "Hamming distance: 64" in out
    assert "Different images" in out


def test_compare_missing_file(config_path, image_dir, tmp_path):
    code = main_cli(['--config', config_path, 'compare',
                     str(image_dir / "a_ramp.png"), str(tmp_path / "missing.png")])
    assert code == EXIT_FAILURE


def test_no_command(capsys):
    assert main_cli([]) == EXIT_SUCCESS
    assert "usage" in capsys.readouterr().out.lower()


def test_build_orchestrator_uses_face_config(tmp_path):
    config = SystemConfig()
    config.faces.same_person_threshold = 0.85
    config.faces.stride = 4
    database = GalleryDatabase(str(tmp_path / "gallery.db"))
    try:
        orchestrator = build_orchestrator(config, database)
        assert orchestrator.embedder.same_person_threshold == 0.85
        assert orchestrator.embedder.stride == 4
        orchestrator.close()
    finally:
        database.close()
