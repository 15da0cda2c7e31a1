"""
Domain service: CSV serialization of tree events.

Export denormalizes each event with the names of its sector, orchard and
block plus the block's attributes. Fields are quoted where needed, so
commas and quotes inside free text survive; newlines in notes are still
flattened to spaces.

Import is tolerant: the header maps column names to positions, missing
columns read as blank, and blank or unreadable values fall back to
per-field defaults instead of failing the row. Both the export header and
the legacy flat per-tree header are understood.
"""
import csv
import io
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from orchard360.domain.errors import ParseError
from orchard360.domain.models import LegacyTreeStatus, TreeEvent
from orchard360.services.domain.master_data import MasterData
from orchard360.utils.timestamps import Clock, format_timestamp, new_id, utc_now

EXPORT_COLUMNS = [
    "id",
    "sector",
    "orchard",
    "block",
    "status",
    "quantity",
    "tce",
    "notes",
    "lastUpdated",
    "variety",
    "structureType",
    "rowCount",
    "hectares",
    "latitude",
    "longitude",
    "blockHealth",
]

LEGACY_COLUMNS = [
    "id",
    "orchard",
    "block",
    "row",
    "tree",
    "variety",
    "rootstock",
    "age",
    "healthScore",
    "tce",
    "notes",
    "status",
    "latitude",
    "longitude",
    "lastUpdated",
]

UNKNOWN_ORCHARD = "Unknown"


# ============================================================
# Encoding
# ============================================================

def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def event_row(event: TreeEvent, master: MasterData) -> List[str]:
    """One export row, in EXPORT_COLUMNS order."""
    block = master.block(event.block_id)
    return [
        event.id,
        master.sector_name(event.sector_id),
        master.orchard_name(event.orchard_id),
        block.name if block else "",
        event.status.value,
        _cell(event.quantity),
        _cell(event.tce),
        (event.notes or "").replace("\r\n", " ").replace("\n", " ").replace("\r", " "),
        event.last_updated,
        block.variety if block else "",
        block.structure_type if block else "",
        _cell(block.row_count) if block else "",
        _cell(block.hectares) if block else "",
        _cell(block.latitude) if block else "",
        _cell(block.longitude) if block else "",
        _cell(block.health) if block else "",
    ]


def encode_events(events: Iterable[TreeEvent], master: MasterData) -> str:
    """
    Serialize events to CSV text.

    Sector, orchard and block columns hold names, not ids, so a re-import
    has to resolve them by name again.

    Args:
        events: Events to export
        master: Master data used to resolve names and block attributes

    Returns:
        CSV text with a header row and one row per event
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for event in events:
        writer.writerow(event_row(event, master))
    return buffer.getvalue()


def export_filename(prefix: str, clock: Clock = utc_now) -> str:
    """Download name stamped with the export time, to the second."""
    return f"{prefix}_{format_timestamp(clock())[:19]}.csv"


# ============================================================
# Decoding
# ============================================================

class CsvRecord(BaseModel):
    """A parsed CSV row with field defaults applied."""
    line: int
    id: str
    sector: str = ""
    orchard: str = UNKNOWN_ORCHARD
    block: str = ""
    status: str = LegacyTreeStatus.OK.value
    quantity: int = 0
    tce: Optional[float] = None
    notes: Optional[str] = None
    last_updated: str
    variety: str = ""
    structure_type: str = ""
    row_count: int = 0
    hectares: float = 0.0
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    block_health: Optional[float] = None
    # Legacy flat per-tree columns
    row: int = 0
    tree: int = 0
    rootstock: Optional[str] = None
    age: Optional[int] = None
    health_score: float = 0.0


@dataclass
class CsvDocument:
    """Parsed CSV text: its header and the records below it."""
    header: List[str]
    records: List[CsvRecord] = field(default_factory=list)

    @property
    def has_quantity(self) -> bool:
        return "quantity" in self.header

    @property
    def is_legacy(self) -> bool:
        """True for the flat per-tree format (no quantity, tree columns present)."""
        return not self.has_quantity and any(
            c in self.header for c in ("row", "tree", "healthScore")
        )


def _to_float(value: str) -> Optional[float]:
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _number(value: str, default: float = 0.0) -> float:
    if not value:
        return default
    parsed = _to_float(value)
    return default if parsed is None else parsed


def _optional_number(value: str) -> Optional[float]:
    return _to_float(value) if value else None


def _optional_int(value: str) -> Optional[int]:
    parsed = _optional_number(value)
    return None if parsed is None else int(parsed)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def parse_csv(
    text: str,
    clock: Clock = utc_now,
    id_factory: Callable[[], str] = new_id,
) -> CsvDocument:
    """
    Parse CSV text into records.

    The first line is the header. Each following non-blank line becomes a
    record, read by column name; defaults apply to blank values: a fresh
    id, orchard "Unknown", 0 for numbers, status "OK", and the current
    time for lastUpdated.

    Args:
        text: CSV text
        clock: Source of "now" for missing timestamps
        id_factory: Source of fresh ids for rows without one

    Returns:
        CsvDocument with the header and parsed records

    Raises:
        ParseError: If the text has no header line
    """
    stripped = (text or "").lstrip("\ufeff").strip()
    if not stripped:
        raise ParseError("CSV text is empty; expected a header line")

    try:
        rows = list(csv.reader(io.StringIO(stripped)))
    except csv.Error as e:
        raise ParseError(f"CSV text could not be read: {e}")

    header = [name.strip() for name in rows[0]]
    if not any(header):
        raise ParseError("CSV header line is blank")
    index: Dict[str, int] = {name: i for i, name in enumerate(header)}
    now = format_timestamp(clock())

    records = []
    for line_no, cols in enumerate(rows[1:], start=2):
        if not any(c.strip() for c in cols):
            continue

        def get(column: str) -> str:
            position = index.get(column)
            if position is None or position >= len(cols):
                return ""
            return cols[position].strip()

        records.append(CsvRecord(
            line=line_no,
            id=get("id") or id_factory(),
            sector=get("sector"),
            orchard=get("orchard") or UNKNOWN_ORCHARD,
            block=get("block"),
            status=get("status") or LegacyTreeStatus.OK.value,
            quantity=int(_number(get("quantity"))),
            tce=_optional_number(get("tce")),
            notes=get("notes") or None,
            last_updated=get("lastUpdated") or now,
            variety=get("variety"),
            structure_type=get("structureType"),
            row_count=int(_number(get("rowCount"))),
            hectares=_number(get("hectares")),
            latitude=_optional_number(get("latitude")),
            longitude=_optional_number(get("longitude")),
            block_health=_optional_number(get("blockHealth")),
            row=int(_number(get("row"))),
            tree=int(_number(get("tree"))),
            rootstock=get("rootstock") or None,
            age=_optional_int(get("age")),
            health_score=_clamp(_number(get("healthScore"))),
        ))

    return CsvDocument(header=header, records=records)
