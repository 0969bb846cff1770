"""Tests for the ingestion CLI commands."""

import json
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from src.cli.main import main
from src.ingestion import registry
from src.ingestion.adapter import FailedJob
from src.ingestion.db import JobStore


@pytest.fixture
def data_dir(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("DATA_DIR", tmpdir)
        monkeypatch.setenv("API_ENDPOINT", "")
        yield Path(tmpdir)


def test_add_list_remove_site(data_dir, capsys):
    """Test managing the site registry from the command line."""
    config_file = data_dir / "site.json"
    config_file.write_text(json.dumps({
        "default": "https://primary.test/list/",
        "search": "https://primary.test/?s=",
        "isLazyLoad": True,
        "imageProxy": True,
        "elements": {"listTitle": {"parent": "div.bs", "text": ".tt", "link": "a"}},
    }))

    assert main(["add-site", "primary.test", "--config", str(config_file), "--alternative", "alt.test"]) == 0
    assert registry.get_site("primary.test", data_dir).alternative == "alt.test"
    assert "alt.test is not registered yet" in capsys.readouterr().out

    assert main(["list-sites"]) == 0
    output = capsys.readouterr().out
    assert "primary.test" in output
    assert "lazy-load" in output
    assert "alternative: alt.test" in output
    assert "image-proxy" in output

    assert main(["remove-site", "primary.test"]) == 0
    assert main(["remove-site", "primary.test"]) == 1


def test_add_site_missing_default(data_dir):
    """Test configs without a default listing URL are refused."""
    config_file = data_dir / "site.json"
    config_file.write_text(json.dumps({"elements": {}}))

    assert main(["add-site", "primary.test", "--config", str(config_file)]) == 1


def test_blacklist_command(data_dir, capsys):
    """Test chapters can be excluded for a comic."""
    assert main(["blacklist", "42", "2", "3.0"]) == 0

    assert registry.load_blacklist(data_dir)["42"] == {Decimal(2), Decimal(3)}
    assert "2, 3" in capsys.readouterr().out


def test_alias_command(data_dir, capsys):
    """Test a scraped title can be mapped to its catalog title."""
    assert main(["alias", "Solo Hero", "Solo Leveling"]) == 0
    assert "Solo Hero -> Solo Leveling" in capsys.readouterr().out

    store = JobStore(data_dir / "jobs.db")
    try:
        assert store.resolve_alias("solo hero") == "Solo Leveling"
    finally:
        store.close()


def test_jobs_and_reclaim_commands(data_dir, capsys):
    """Test failed jobs are listed and stale claims released."""
    store = JobStore(data_dir / "jobs.db")
    job = store.record_failure(FailedJob(
        source_site="primary.test", comic_id="42", comic_title="Solo Hero",
        chapter_link="https://primary.test/ch-5", chapter_number=Decimal(5), is_critical=True,
        error="[data_integrity] Broken file detected",
    ))
    store.claim(job.id)
    store.close()

    assert main(["jobs"]) == 0
    output = capsys.readouterr().out
    assert "[claimed critical] Solo Hero chapter 5" in output
    assert "Broken file detected" in output

    assert main(["reclaim", "--hours", "0"]) == 0
    assert "Released 1 stale job(s)" in capsys.readouterr().out


def test_run_requires_endpoint(data_dir, capsys):
    """Test a pass is refused without a catalog endpoint."""
    assert main(["run"]) == 1
    assert "API_ENDPOINT" in capsys.readouterr().out


def test_no_command_prints_help():
    """Test running without a command fails."""
    assert main([]) == 1
