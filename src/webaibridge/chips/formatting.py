"""Host chip records and their text rendering for chat insertion."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

__all__ = ["ChipRecord", "format_chip_header", "format_chips_for_insert", "parse_chip_records"]


@dataclass(slots=True)
class ChipRecord:
    """A context chip collected on the editor host."""

    id: str
    type: str
    label: str
    text: str
    language_id: str = "plaintext"
    file_path: str | None = None
    line_range: str | None = None
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChipRecord":
        chip_id = payload.get("id")
        if not isinstance(chip_id, str) or not chip_id:
            raise ValueError("chip record requires a string id")
        timestamp = payload.get("timestamp")
        return cls(
            id=chip_id,
            type=str(payload.get("type") or "selection"),
            label=str(payload.get("label") or chip_id),
            text=str(payload.get("text") or ""),
            language_id=str(payload.get("languageId") or "plaintext"),
            file_path=payload.get("filePath") if isinstance(payload.get("filePath"), str) else None,
            line_range=payload.get("lineRange") if isinstance(payload.get("lineRange"), str) else None,
            timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else time.time() * 1000,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "text": self.text,
            "languageId": self.language_id,
            "timestamp": self.timestamp,
        }
        if self.file_path is not None:
            payload["filePath"] = self.file_path
        if self.line_range is not None:
            payload["lineRange"] = self.line_range
        return payload


def parse_chip_records(payload: Any) -> list[ChipRecord]:
    """Parse a wire ``chips`` array, skipping entries that are not valid records."""

    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        return []
    records: list[ChipRecord] = []
    for entry in payload:
        if not isinstance(entry, Mapping):
            continue
        try:
            records.append(ChipRecord.from_payload(entry))
        except ValueError:
            continue
    return records


def format_chip_header(chip: ChipRecord, position: tuple[int, int] | None = None) -> str:
    prefix = f"[{position[0]}/{position[1]}] " if position else ""
    kind = "FILE: " if chip.type == "file" else ""
    return f"/* {prefix}{kind}{chip.label} ({chip.language_id}) */"


def format_chips_for_insert(chips: Iterable[ChipRecord]) -> str:
    """Render chips as one text block, numbering them when there are several."""

    items = list(chips)
    if not items:
        return ""
    if len(items) == 1:
        chip = items[0]
        return f"{format_chip_header(chip)}\n{chip.text}"
    total = len(items)
    parts = [
        f"{format_chip_header(chip, (index, total))}\n{chip.text}"
        for index, chip in enumerate(items, start=1)
    ]
    return "\n\n---\n\n".join(parts)
