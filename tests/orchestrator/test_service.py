import json

import pandas as pd
import pytest

from lead_importer.config import ImportSettings
from lead_importer.ingestion.canonical import CanonicalStoreError
from lead_importer.ingestion.exporters import REPORT_PREFIX
from lead_importer.ingestion.readers import ParseError
from lead_importer.models import ImportOutcome, OperatorDefaults
from lead_importer.orchestrator import ImportService
from lead_importer.reference import decode_reference
from lead_importer.store import InMemoryRecordStore, StoreError

SECRET = "unit-test-secret"
DEFAULTS = OperatorDefaults(operator_id=7, center_id=3, product_id=2)
MAPPING = {"nom": "nom", "prenom": "prenom", "tel": "tel", "cp": "cp", "ville": "ville"}


@pytest.fixture()
def settings(tmp_path):
    return ImportSettings(work_dir=tmp_path, reference_secret=SECRET, preview_limit=2)


@pytest.fixture()
def store():
    return InMemoryRecordStore(
        [{"id": 100, "nom": "Existant", "prenom": "Eve", "tel": "0612345678", "id_etat_final": 5, "archive": 0}],
        states=[{"id": 1, "titre": "NOUVEAU"}, {"id": 5, "titre": "EN-ATTENTE"}],
    )


@pytest.fixture()
def service(store, settings):
    return ImportService(store, settings=settings)


def _csv(*lines):
    return ("\n".join(lines) + "\n").encode("utf-8")


def test_preview_drops_blank_rows_and_stores_canonical_file(service):
    data = _csv("nom,prenom,tel", "Dupont,Jean,0612345678", "Martin,Marie,33612345678", ",,")

    preview = service.preview(data, ".csv", owner=7)

    assert preview.columns == ["nom", "prenom", "tel"]
    assert preview.total_rows == 3
    assert [row["nom"] for row in preview.preview_rows] == ["Dupont", "Martin"]
    assert service.canonical_store.load(preview.canonical_handle) == preview.preview_rows
    assert preview.as_dict()["canonicalHandle"] == preview.canonical_handle


def test_preview_caps_rows(service):
    data = _csv("nom,tel", "A,0611111111", "B,0622222222", "C,0633333333")

    preview = service.preview(data, "csv")

    assert len(preview.preview_rows) == 2
    assert preview.total_rows == 3


def test_preview_without_data_is_an_error(service):
    with pytest.raises(ParseError):
        service.preview(_csv("nom,tel", ",", ","), ".csv")


def test_process_inserts_and_stamps_defaults(service, store, settings):
    data = _csv("nom,prenom,tel,cp,ville", "Durand,Luc,07 00 00 00 01,7500,Paris")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    assert result.total == 1
    assert result.inserted == 1
    assert result.report_file is None
    inserted = store.contacts[-1]
    assert inserted["nom"] == "Durand"
    assert inserted["tel"] == "0700000001"
    assert inserted["cp"] == "07500"
    assert inserted["id_agent"] == 7
    assert inserted["id_centre"] == 3
    assert inserted["produit"] == 2
    assert inserted["id_etat_final"] == 5
    assert (inserted["archive"], inserted["active"], inserted["ko"], inserted["hc"], inserted["valider"]) == (
        0,
        1,
        0,
        0,
        0,
    )
    assert decode_reference(inserted["hash"], SECRET, strict=True) == inserted["id"]
    assert not service.canonical_store.exists(handle)


def test_spreadsheet_scientific_phone_is_normalised(service, store, tmp_path):
    path = tmp_path / "contacts.xlsx"
    pd.DataFrame([{"nom": "Sci", "tel": "6.12345678E+8"}, {"nom": "Neuf", "tel": "6.98765432E+8"}]).to_excel(
        path, index=False
    )

    result = service.import_file(path, {"nom": "nom", "tel": "tel"}, DEFAULTS)

    assert result.inserted == 1
    assert result.duplicates[0].matched_phone == "0612345678"
    assert store.contacts[-1]["tel"] == "0698765432"


@pytest.mark.parametrize(
    "extension, payload",
    [
        (".json", b'[{"nom": "A", "tel": 6.12345678e8}, {"nom": "B", "tel": 712345678.0}]'),
        (".json", b'[{"nom": "A", "tel": 612345678}, {"nom": "B", "tel": 712345678}]'),
        (".jsonl", b'{"nom": "A", "tel": 6.12345678e8}\n{"nom": "B", "tel": 712345678.0}\n'),
        (".jsonl", b'{"nom": "A", "tel": 612345678}\n{"nom": "B", "tel": 712345678}\n'),
    ],
)
def test_numeric_json_phones_are_normalised(service, store, extension, payload):
    handle = service.preview(payload, extension).canonical_handle

    result = service.process(handle, {"nom": "nom", "tel": "tel"}, DEFAULTS)

    assert result.inserted == 1
    [duplicate] = result.duplicates
    assert duplicate.matched_phone == "0612345678"
    assert duplicate.existing.id == 100
    assert duplicate.contact.last_name == "A"
    assert store.contacts[-1]["tel"] == "0712345678"


def test_existing_phone_with_other_spelling_is_a_duplicate(service, store):
    data = _csv("Nom,Numéro", "Dupont,06 12 34 56 78")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, {"nom": "Nom", "tel": "Numéro"}, DEFAULTS)

    assert result.inserted == 0
    [duplicate] = result.duplicates
    assert duplicate.existing.id == 100
    assert duplicate.existing.state_title == "EN-ATTENTE"
    assert duplicate.reason_type == "duplicate"
    assert len(store.contacts) == 1
    assert result.report_file.startswith(REPORT_PREFIX)


def test_record_without_phone_is_invalid(service, store):
    data = _csv("nom,prenom,cp", "Sans,Tel,75001")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    [invalid] = result.invalid
    assert invalid.reason_type == "no_phone"
    assert invalid.contact.last_name == "Sans"
    assert len(store.contacts) == 1


def test_rows_sharing_a_phone_within_one_file(service, store):
    data = _csv("nom,tel", "Premier,0711111111", "Second,07 11 11 11 11")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    assert result.inserted == 1
    [duplicate] = result.duplicates
    assert duplicate.existing.id == store.contacts[-1]["id"]
    assert duplicate.contact.last_name == "Second"


def test_duplicate_check_runs_before_postal_code_validation(service):
    data = _csv("nom,tel,cp", "Dupont,0612345678,123", "Neuf,0799999999,123")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    assert [outcome.status for outcome in result.duplicates] == [ImportOutcome.DUPLICATE]
    assert [outcome.reason_type for outcome in result.invalid] == ["invalid_postal_code"]
    assert result.invalid_postal_codes == 1


def test_skip_duplicate_check_inserts_existing_phones(service, store):
    data = _csv("nom,tel", "Dupont,0612345678")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS, skip_duplicate_check=True)

    assert result.inserted == 1
    assert len(store.contacts) == 2


def test_store_uniqueness_guard_reports_duplicate(settings):
    store = InMemoryRecordStore([{"id": 1, "tel": "0612345678"}], unique_phones=True)
    service = ImportService(store, settings=settings)
    handle = service.preview(_csv("nom,tel", "Dupont,0612345678"), ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS, skip_duplicate_check=True)

    [duplicate] = result.duplicates
    assert duplicate.existing is None
    assert duplicate.matched_phone == "0612345678"


class FlakyStore(InMemoryRecordStore):
    def insert_contact(self, fields):
        if fields.get("nom") == "Boom":
            raise StoreError("disk full")
        return super().insert_contact(fields)


def test_store_failure_is_isolated_to_its_row(settings):
    store = FlakyStore()
    service = ImportService(store, settings=settings)
    data = _csv("nom,tel", "Boom,0711111111", "Calme,0722222222")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    assert result.inserted == 1
    [error] = result.errors
    assert error.reason == "disk full"
    assert error.reason_type == "other_error"
    assert [row.reason_type for row in result.not_inserted] == ["other_error"]


def test_report_lists_every_record_not_inserted(service, settings):
    data = _csv("nom,tel,cp", "Dupont,0612345678,75001", "Sans,,75001", "Postal,0733333333,1", "Ok,0744444444,75001")
    handle = service.preview(data, ".csv").canonical_handle

    result = service.process(handle, MAPPING, DEFAULTS)

    assert result.inserted == 1
    assert [row.reason_type for row in result.not_inserted] == ["duplicate", "no_phone", "invalid_postal_code"]
    report = service.open_report(result.report_file)
    lines = report.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 4
    summary = result.as_dict()
    assert summary["notInserted"]["total"] == 3
    assert summary["downloadFile"] == result.report_file
    json.dumps(summary)


def test_canonical_file_is_discarded_when_processing_fails(settings):
    class BrokenStore(InMemoryRecordStore):
        def read_existing_contacts(self):
            raise StoreError("database unavailable")

    service = ImportService(BrokenStore(), settings=settings)
    handle = service.preview(_csv("nom,tel", "Dupont,0612345678"), ".csv").canonical_handle

    with pytest.raises(StoreError):
        service.process(handle, MAPPING, DEFAULTS)

    assert not service.canonical_store.exists(handle)


def test_unknown_handle(service):
    with pytest.raises(CanonicalStoreError):
        service.process("import-1-deadbeef.jsonl", MAPPING, DEFAULTS)


def test_diagnose_reports_phone_coverage(service, store):
    data = _csv("nom,Téléphone,gsm1", "A,0611111111,", "B,,0622222222", "C,,", ",,")

    diagnosis = service.diagnose(data, ".csv", "contacts.csv")

    steps = {step.step: step for step in diagnosis.steps}
    assert steps["parsing"].details["dataRows"] == 4
    assert steps["columns"].details["columns"] == ["nom", "Téléphone", "gsm1"]
    assert steps["filtering"].details["removedRows"] == 1
    assert steps["phones"].details["analysis"] == {
        "hasTel": 1,
        "hasGsm1": 1,
        "hasGsm2": 0,
        "hasAnyPhone": 2,
        "noPhone": 1,
    }
    assert diagnosis.ok
    assert "correct" in diagnosis.recommendation
    assert len(store.contacts) == 1


def test_diagnose_without_phones_or_parseable_content(service):
    no_phone = service.diagnose(_csv("nom,ville", "A,Paris"), ".csv")
    assert not no_phone.ok
    assert "téléphone" in no_phone.recommendation

    broken = service.diagnose(b"{oops", ".json")
    assert not broken.ok
    assert broken.steps[0].status == "error"
