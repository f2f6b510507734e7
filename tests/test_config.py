import json
from pathlib import Path

import pytest

from lead_importer.config import DEFAULT_SECRET, SECRET_ENV_VAR, ConfigurationError, ImportSettings, load_configuration


def test_load_configuration_reads_json_and_yaml(tmp_path):
    json_path = tmp_path / "config.json"
    json_path.write_text(json.dumps({"preview_limit": 5}), encoding="utf-8")
    yaml_path = tmp_path / "config.yaml"
    yaml_path.write_text("work_dir: data\ninitial_state_title: A-TRAITER\n", encoding="utf-8")

    assert load_configuration(json_path) == {"preview_limit": 5}
    assert load_configuration(yaml_path) == {"work_dir": "data", "initial_state_title": "A-TRAITER"}


def test_load_configuration_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_configuration(tmp_path / "missing.json")

    ini_path = tmp_path / "config.ini"
    ini_path.write_text("[x]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(ini_path)

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(broken)

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_configuration(listing)


def test_settings_from_mapping_prefers_environment_secret():
    settings = ImportSettings.from_mapping(
        {"reference_secret": "from-file", "preview_limit": "20", "work_dir": "jobs", "database_url": "sqlite://"},
        environ={SECRET_ENV_VAR: "from-env"},
    )

    assert settings.reference_secret == "from-env"
    assert settings.preview_limit == 20
    assert settings.work_dir == Path("jobs")
    assert settings.database_url == "sqlite://"
    assert settings.initial_state_title == "EN-ATTENTE"


def test_default_secret_logs_a_warning(caplog):
    with caplog.at_level("WARNING"):
        settings = ImportSettings.from_mapping({}, environ={})

    assert settings.reference_secret == DEFAULT_SECRET
    assert SECRET_ENV_VAR in caplog.text


@pytest.mark.parametrize("limit", ["abc", 0, -3])
def test_invalid_preview_limit(limit):
    with pytest.raises(ConfigurationError):
        ImportSettings.from_mapping({"preview_limit": limit}, environ={})
