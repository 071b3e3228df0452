import pytest

from scouter_importer.services.row_mapper import map_row
from scouter_importer.utils.csv_validator import (
    ValidationError,
    normalize_mapping,
    validate_mapping,
)

ROW = {
    "Nome": "Ana",
    "Nome Completo": "Ana Souza",
    "Celular": "",
    "Telefone": "11 99999-0000",
    "Fixo": "11 3333-0000",
}


def test_primary_source_wins_when_present():
    mapping = {"name": {"primary": "Nome", "secondary": "Nome Completo"}}
    assert map_row(ROW, mapping) == {"name": "Ana"}


def test_falls_back_through_priorities_on_empty_values():
    mapping = {"phone": {"primary": "Celular", "secondary": "Missing", "tertiary": "Telefone"}}
    assert map_row(ROW, mapping) == {"phone": "11 99999-0000"}


def test_whitespace_only_value_counts_as_empty():
    row = {"Celular": "   ", "Fixo": "11 3333-0000"}
    mapping = {"phone": {"primary": "Celular", "secondary": "Fixo"}}
    assert map_row(row, mapping) == {"phone": "11 3333-0000"}


def test_unresolved_targets_are_omitted():
    mapping = {"name": {"primary": "Nome"}, "email": {"primary": "Email"}}
    assert map_row(ROW, mapping) == {"name": "Ana"}


def test_only_mapped_targets_are_emitted():
    record = map_row(ROW, {"phone": {"primary": "Telefone"}})
    assert set(record) == {"phone"}


def test_plain_string_source_is_primary_only():
    assert map_row(ROW, {"name": "Nome Completo"}) == {"name": "Ana Souza"}


def test_empty_mapping_rejected():
    with pytest.raises(ValidationError):
        map_row(ROW, {})


def test_normalize_mapping_drops_blank_sources():
    normalized = normalize_mapping(
        {
            "name": {"primary": " Nome ", "secondary": ""},
            "email": {"primary": ""},
            "phone": "Telefone",
        }
    )
    assert normalized == {"name": {"primary": "Nome"}, "phone": {"primary": "Telefone"}}


def test_normalize_mapping_rejects_all_blank():
    with pytest.raises(ValidationError):
        normalize_mapping({"name": {"primary": " "}})


def test_validate_mapping_checks_header_and_columns():
    headers = ["Nome", "Telefone"]
    columns = ["name", "phone", "email"]

    assert validate_mapping({"name": "Nome"}, headers, columns) == {"name": {"primary": "Nome"}}

    with pytest.raises(ValidationError, match="not found in CSV header"):
        validate_mapping({"name": {"primary": "Nome", "secondary": "Apelido"}}, headers, columns)

    with pytest.raises(ValidationError, match="Unknown target field"):
        validate_mapping({"nickname": "Nome"}, headers, columns)
