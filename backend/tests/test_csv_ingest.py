import pytest

from scouter_importer.services import csv_ingest


def _write(path, text, encoding="utf-8"):
    path.write_text(text, encoding=encoding)
    return path


def test_reads_trimmed_headers_and_values(tmp_path):
    path = _write(tmp_path / "leads.csv", " Nome , Idade \n Ana , 21 \nBruno,30\n")

    assert csv_ingest.read_headers(path) == ["Nome", "Idade"]
    assert list(csv_ingest.iter_rows(path)) == [
        {"Nome": "Ana", "Idade": "21"},
        {"Nome": "Bruno", "Idade": "30"},
    ]


@pytest.mark.parametrize("delimiter", [";", "\t", "|"])
def test_detects_delimiter(tmp_path, delimiter):
    path = _write(tmp_path / "leads.csv", f"Nome{delimiter}Idade\nAna{delimiter}21\n")

    assert csv_ingest.detect_delimiter(f"Nome{delimiter}Idade") == delimiter
    assert list(csv_ingest.iter_rows(path)) == [{"Nome": "Ana", "Idade": "21"}]


def test_byte_order_mark_is_stripped(tmp_path):
    path = _write(tmp_path / "leads.csv", "Nome,Idade\nAna,21\n", encoding="utf-8-sig")
    assert csv_ingest.read_headers(path) == ["Nome", "Idade"]


def test_blank_lines_are_not_rows(tmp_path):
    path = _write(tmp_path / "leads.csv", "Nome,Idade\nAna,21\n,\n\nBruno,30\n")

    assert csv_ingest.count_rows(path) == 2
    assert [row["Nome"] for row in csv_ingest.iter_rows(path)] == ["Ana", "Bruno"]


def test_iter_rows_skips_processed_prefix(tmp_path):
    lines = "\n".join(f"Lead {i},{20 + i}" for i in range(5))
    path = _write(tmp_path / "leads.csv", f"Nome,Idade\n{lines}\n")

    assert [row["Nome"] for row in csv_ingest.iter_rows(path, start=3)] == ["Lead 3", "Lead 4"]


def test_extra_cells_beyond_header_are_dropped(tmp_path):
    path = _write(tmp_path / "leads.csv", "Nome,Idade\nAna,21,extra\n")
    assert list(csv_ingest.iter_rows(path)) == [{"Nome": "Ana", "Idade": "21"}]


def test_missing_file_is_a_readable_error(tmp_path):
    with pytest.raises(ValueError, match="CSV file not found"):
        csv_ingest.count_rows(tmp_path / "nope.csv")


def test_empty_file_is_rejected(tmp_path):
    path = _write(tmp_path / "empty.csv", "")
    with pytest.raises(ValueError):
        csv_ingest.read_headers(path)


def test_undecodable_file_is_rejected(tmp_path):
    path = tmp_path / "latin1.csv"
    path.write_bytes("Nome\nJo\xe3o\n".encode("latin-1"))
    with pytest.raises(ValueError, match="encoding"):
        csv_ingest.count_rows(path)
