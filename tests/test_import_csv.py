import json

import pytest

from directory_import.core.config import ConfigError
from directory_import.jobs import import_csv
from directory_import.jobs.import_session import ImportSession


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "companies.csv"
    path.write_text(
        "\ufeffNom,Catégorie,Adresse,Téléphone\n"
        "Acme,restaurant,Damascus,0999123456\n"
        ",,,\n"
        "Beta,cafe,Beirut,\n",
        encoding="utf-8",
    )
    return path


def test_read_rows_strips_bom_and_blank_lines(csv_file):
    rows = import_csv.read_rows(csv_file)

    assert [row["Nom"] for row in rows] == ["Acme", "Beta"]
    assert rows[0]["Catégorie"] == "restaurant"


def test_settings_from_args_inverts_flags():
    args = import_csv.build_parser().parse_args(
        ["data.csv", "--no-images", "--allow-duplicates", "--no-validate-phones", "--batch-size", "0"]
    )

    settings = import_csv.settings_from_args(args)

    assert settings.download_images is False
    assert settings.skip_duplicates is False
    assert settings.validate_phones is False
    assert settings.validate_emails is True
    assert settings.create_missing_categories is True
    assert settings.batch_size == 1


def test_run_import_job_writes_report(monkeypatch, csv_file, tmp_path):
    captured = {}

    def fake_run(session, importer):
        captured["rows"] = session.rows
        session.status = "completed"
        return session

    monkeypatch.setattr(import_csv, "init_pool", lambda: None)
    monkeypatch.setattr(import_csv, "PostgresStore", lambda: object())
    monkeypatch.setattr(import_csv, "CompanyImporter", lambda store: "importer")
    monkeypatch.setattr(import_csv, "run_import_session", fake_run)
    report = tmp_path / "report.json"

    session = import_csv.run_import_job(csv_file, import_csv.ImportSettings(), report)

    assert len(captured["rows"]) == 2
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["id"] == session.id
    assert payload["stats"]["totalRows"] == 2


def test_main_exit_codes(monkeypatch, csv_file, capsys):
    def config_error(path, settings, report):
        raise ConfigError("DATABASE_URL is required for database connections")

    monkeypatch.setattr(import_csv, "run_import_job", config_error)
    assert import_csv.main([str(csv_file)]) == 2

    def crash(path, settings, report):
        raise RuntimeError("boom")

    monkeypatch.setattr(import_csv, "run_import_job", crash)
    assert import_csv.main([str(csv_file)]) == 1

    def ok(path, settings, report):
        session = ImportSession.new([{"Nom": "Acme"}], settings)
        session.status = "completed"
        session.stats.successful_imports = 1
        return session

    monkeypatch.setattr(import_csv, "run_import_job", ok)
    assert import_csv.main([str(csv_file)]) == 0
    assert "1 imported" in capsys.readouterr().out
