"""Tests for the command line interface."""

import sys

import pytest

from catalog_importer import main as cli


@pytest.fixture(autouse=True)
def no_ai(monkeypatch):
    for name in ("CLASSIFIER_API_TOKEN", "HF_API_TOKEN", "USE_AI_CATEGORIZATION"):
        monkeypatch.delenv(name, raising=False)


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["catalog-import", *args])
    return cli.main()


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "listings.csv"
    path.write_text(
        'TITLE,PRICE,TAGS,IMAGE1\n"Baby Shower Bingo",5.99,"baby,shower,game",https://x/img.jpg\n',
        encoding="utf-8",
    )
    return path


class TestImportCommand:
    """Tests for the import subcommand."""

    def test_import(self, monkeypatch, capsys, tmp_path, csv_file):
        catalog_file = tmp_path / "catalog.yaml"
        code = run_cli(
            monkeypatch, "import", str(csv_file),
            "--catalog", str(catalog_file),
            "--env-file", str(tmp_path / "missing.env"),
            "--draft",
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "Created product: Baby Shower Bingo" in out
        assert "Imported:           1" in out
        assert catalog_file.exists()

    def test_sse_output(self, monkeypatch, capsys, tmp_path, csv_file):
        code = run_cli(
            monkeypatch, "import", str(csv_file),
            "--catalog", str(tmp_path / "catalog.yaml"),
            "--env-file", str(tmp_path / "missing.env"),
            "--sse",
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "event: log\ndata: " in out
        assert "event: complete\n" in out

    def test_rejected_file(self, monkeypatch, capsys, tmp_path):
        bad = tmp_path / "bad.csv"
        bad.write_text("NAME\nx\n", encoding="utf-8")
        code = run_cli(
            monkeypatch, "import", str(bad),
            "--catalog", str(tmp_path / "catalog.yaml"),
            "--env-file", str(tmp_path / "missing.env"),
        )

        assert code == 1
        assert "CSV must contain a TITLE column" in capsys.readouterr().out


class TestStatusCommands:
    """Tests for status and tasks subcommands."""

    def test_status_and_tasks(self, monkeypatch, capsys, tmp_path, csv_file):
        catalog_file = str(tmp_path / "catalog.yaml")
        run_cli(monkeypatch, "import", str(csv_file), "--catalog", catalog_file, "--env-file", str(tmp_path / "x.env"))
        capsys.readouterr()

        assert run_cli(monkeypatch, "status", "--catalog", catalog_file) == 0
        status = capsys.readouterr().out
        assert "Total: 1" in status
        assert "Pending image imports: 1" in status

        assert run_cli(monkeypatch, "tasks", "--catalog", catalog_file) == 0
        tasks = capsys.readouterr().out
        assert "https://x/img.jpg" in tasks
        assert "Featured: yes" in tasks

    def test_no_tasks(self, monkeypatch, capsys, tmp_path):
        assert run_cli(monkeypatch, "tasks", "--catalog", str(tmp_path / "empty.yaml")) == 0
        assert "No queued image tasks." in capsys.readouterr().out

    def test_no_command(self, monkeypatch):
        assert run_cli(monkeypatch) == 1
