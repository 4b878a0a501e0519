"""Tests for the dirsearch command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from directory_api import cli


@pytest.fixture(name="runner")
def _runner() -> CliRunner:
    return CliRunner()


class TestCheckWeights:
    """Tests for the check-weights command."""

    def test_valid(self, runner: CliRunner, weight_file: Path) -> None:
        """A valid document prints its version."""
        result = runner.invoke(cli.app, ["check-weights", str(weight_file)])
        assert result.exit_code == 0
        assert json.loads(result.stdout.strip().splitlines()[-1]) == {
            "status": "valid",
            "version": "2024.06-tuned",
        }

    def test_invalid(
        self, runner: CliRunner, tmp_path: Path, weight_document: dict[str, object]
    ) -> None:
        """Violations are reported and the command exits with 1."""
        weight_document["geospatial"]["decay_scale"] = 500  # type: ignore[index]
        path = tmp_path / "weights.json"
        path.write_text(json.dumps(weight_document), encoding="utf-8")
        result = runner.invoke(cli.app, ["check-weights", str(path)])
        assert result.exit_code == 1
        assert "geospatial.decay_scale" in result.output

    def test_missing_file(self, runner: CliRunner, tmp_path: Path) -> None:
        """Unreadable files exit with 1."""
        result = runner.invoke(cli.app, ["check-weights", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "Cannot read weight configuration" in result.output


class TestDownloadNltk:
    """Tests for the download-nltk command."""

    def test_already_present(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        """Nothing to fetch is reported plainly."""
        monkeypatch.setattr(cli, "download_nltk_resources", lambda: [])
        result = runner.invoke(cli.app, ["download-nltk"])
        assert result.exit_code == 0
        assert "NLTK data already present" in result.stdout

    def test_fetched(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        """Fetched packages are listed."""
        monkeypatch.setattr(cli, "download_nltk_resources", lambda: ["words", "wordnet"])
        result = runner.invoke(cli.app, ["download-nltk"])
        assert "Downloaded: words, wordnet" in result.stdout


class TestServe:
    """Tests for the serve command."""

    def test_runs_uvicorn_factory(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        """serve hands the app factory to uvicorn."""
        calls: list[tuple[tuple[object, ...], dict[str, object]]] = []
        monkeypatch.setattr(
            cli.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs))
        )
        result = runner.invoke(cli.app, ["serve", "--port", "9000"])
        assert result.exit_code == 0
        ((args, kwargs),) = calls
        assert args == ("directory_api.app:create_app",)
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9000
