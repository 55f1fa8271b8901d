from __future__ import annotations

from dune_pager.export import save_rows_as_csv


def test_missing_keys_render_as_empty_cells(tmp_path):
    path = tmp_path / "output.csv"
    rows = [
        {"address": "0x01", "balance": 1.5},
        {"address": "0x02"},
        {"address": "0x03", "balance": 3},
    ]

    written = save_rows_as_csv(rows, path)

    assert written == 3
    assert path.read_text(encoding="utf-8").splitlines() == [
        "address;balance",
        "0x01;1.5",
        "0x02;",
        "0x03;3",
    ]


def test_header_comes_from_first_record(tmp_path):
    path = tmp_path / "out.csv"
    save_rows_as_csv([{"a": 1}, {"a": 2, "b": "extra"}], path)
    assert path.read_text(encoding="utf-8").splitlines() == ["a", "1", "2"]


def test_value_rendering(tmp_path):
    path = tmp_path / "out.csv"
    save_rows_as_csv(
        [{"flag": True, "off": False, "none": None, "nested": {"x": 1}, "list": [1, 2], "text": "a;b"}],
        path,
    )
    header, row = path.read_text(encoding="utf-8").splitlines()
    assert header == "flag;off;none;nested;list;text"
    assert row == 'true;false;;;;"a;b"'


def test_non_object_records_are_skipped(tmp_path):
    path = tmp_path / "out.csv"
    assert save_rows_as_csv([{"a": 1}, ["not", "a", "record"], 7, {"a": 2}], path) == 2
    assert path.read_text(encoding="utf-8").splitlines() == ["a", "1", "2"]


def test_empty_rows_write_an_empty_file(tmp_path):
    path = tmp_path / "out.csv"
    assert save_rows_as_csv([], path) == 0
    assert path.read_text(encoding="utf-8") == ""


def test_custom_delimiter(tmp_path):
    path = tmp_path / "out.csv"
    save_rows_as_csv([{"a": 1, "b": 2}], path, delimiter=",")
    assert path.read_text(encoding="utf-8").splitlines() == ["a,b", "1,2"]
