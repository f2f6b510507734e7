from lead_importer.mapping import explain_mapping, extract_display_fields, find_key, resolve_field


def test_find_key_is_case_and_accent_insensitive():
    record = {"Téléphone": "0612345678", "Code-Postal": "75001"}

    assert find_key(record, "telephone") == "Téléphone"
    assert find_key(record, "code_postal") == "Code-Postal"
    assert find_key(record, "ville") is None


def test_find_key_uses_variant_tables():
    record = {"Mobile": "0612345678", "Surname": "Dupont", "Zip": "75001"}

    assert find_key(record, "gsm") == "Mobile"
    assert find_key(record, "nom") == "Surname"
    assert find_key(record, "cp") == "Zip"


def test_find_key_partial_match_needs_similar_lengths():
    assert find_key({"telephones": "x"}, "telephone") == "telephones"
    assert find_key({"telephone_portable_principal": "x"}, "telephone") is None


def test_resolve_field_prefers_exact_then_normalised_key():
    record = {"TEL": "0612345678"}

    assert resolve_field(record, "tel", "TEL") == "0612345678"
    assert resolve_field(record, "tel", "Tel.") == "0612345678"
    assert resolve_field(record, "nom", "") is None


def test_resolve_field_widens_phone_lookup():
    record = {"Nom": "Dupont", "Phone (mobile)": "06 12 34 56 78", "Phone GSM2": "0798765432"}

    assert resolve_field(record, "tel", "Numero") == "06 12 34 56 78"
    assert resolve_field(record, "gsm2", "Autre") == "0798765432"


def test_resolve_field_ignores_short_phone_candidates():
    record = {"Phone ext": "123"}

    assert resolve_field(record, "tel", "Numero") is None


def test_resolve_field_returns_present_but_empty_value():
    assert resolve_field({"ville": ""}, "ville", "ville") == ""


def test_explain_mapping_reports_each_step():
    record = {"Téléphone": "0612345678", "Nom": "Dupont"}

    explanation = explain_mapping(record, {"tel": "telephone", "nom": "Nom", "ville": ""})

    assert explanation["tel"]["foundKey"] == "Téléphone"
    assert explanation["tel"]["directValue"] is None
    assert explanation["tel"]["resolvedValue"] == "0612345678"
    assert explanation["nom"]["value"] == "Dupont"
    assert explanation["ville"]["foundKey"] is None
    assert explanation["ville"]["resolvedValue"] is None


def test_extract_display_fields_from_mapping_and_guesses():
    record = {"Last Name": "Dupont", "Prénom": "Jean", "Mobile": "0612345678", "Ville": "Paris", "CP": "75001"}

    mapped = extract_display_fields(record, {"nom": "Last Name", "tel": "Mobile"})

    assert mapped.last_name == "Dupont"
    assert mapped.phone == "0612345678"
    assert mapped.first_name == "Jean"
    assert mapped.city == "Paris"
    assert mapped.postal_code == "75001"
