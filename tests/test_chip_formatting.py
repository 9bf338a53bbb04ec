"""Tests for host chip records and insertion formatting."""

from __future__ import annotations

from webaibridge.chips.formatting import ChipRecord, format_chips_for_insert, parse_chip_records


def _file_chip() -> ChipRecord:
    return ChipRecord(id="c1", type="file", label="app.py", text="print('hi')", language_id="python")


def _selection_chip() -> ChipRecord:
    return ChipRecord(id="c2", type="selection", label="main.ts:3-5", text="let x = 1;", language_id="typescript")


def test_single_file_chip_has_file_header() -> None:
    assert format_chips_for_insert([_file_chip()]) == "/* FILE: app.py (python) */\nprint('hi')"


def test_single_selection_chip_has_plain_header() -> None:
    assert format_chips_for_insert([_selection_chip()]) == "/* main.ts:3-5 (typescript) */\nlet x = 1;"


def test_multiple_chips_are_numbered_and_separated() -> None:
    text = format_chips_for_insert([_file_chip(), _selection_chip()])

    assert text == (
        "/* [1/2] FILE: app.py (python) */\nprint('hi')"
        "\n\n---\n\n"
        "/* [2/2] main.ts:3-5 (typescript) */\nlet x = 1;"
    )


def test_no_chips_formats_to_empty_string() -> None:
    assert format_chips_for_insert([]) == ""


def test_wire_payload_uses_camel_case_keys() -> None:
    chip = ChipRecord(
        id="c3",
        type="file",
        label="util.go",
        text="package util",
        language_id="go",
        file_path="pkg/util.go",
        line_range="1-1",
        timestamp=1000.0,
    )

    payload = chip.to_payload()

    assert payload["languageId"] == "go"
    assert payload["filePath"] == "pkg/util.go"
    assert payload["lineRange"] == "1-1"
    assert ChipRecord.from_payload(payload) == chip


def test_parse_chip_records_skips_invalid_entries() -> None:
    records = parse_chip_records(
        [
            {"id": "ok", "type": "selection", "label": "sel", "text": "x"},
            {"type": "file"},
            "garbage",
            {"id": "", "text": "empty id"},
        ]
    )

    assert [record.id for record in records] == ["ok"]
    assert records[0].language_id == "plaintext"
    assert parse_chip_records(None) == []
    assert parse_chip_records("not a list") == []
