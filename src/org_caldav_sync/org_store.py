"""
Org-mode files as the local event store.

An event is a heading carrying an ``:ID:`` property and an active
timestamp somewhere below the heading line::

    * Meeting                                                    :work:
      :PROPERTIES:
      :ID:       6f1c7f0e-...
      :END:
      <2024-01-10 Wed 10:00-11:00>
      Agenda and notes.

An entry runs from its heading to the next heading of any level, so
sub-headings are independent events.
"""

import logging
import re
import textwrap
import uuid
from dataclasses import dataclass
from datetime import date
from datetime import datetime
from datetime import time
from pathlib import Path

from org_caldav_sync import ical
from org_caldav_sync.models import CalendarSyncError
from org_caldav_sync.models import EventFields
from org_caldav_sync.models import LocalLookupError
from org_caldav_sync.models import SyncChangeMode

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(\*+)\s+(.*?)\s*$")
_TAGS_RE = re.compile(r"\s+(:[\w@#%:]+:)$")
_PLANNING_RE = re.compile(r"^\s*(SCHEDULED|DEADLINE|CLOSED):")
_DRAWER_START_RE = re.compile(r"^\s*:PROPERTIES:\s*$", re.IGNORECASE)
_DRAWER_END_RE = re.compile(r"^\s*:END:\s*$", re.IGNORECASE)
_PROPERTY_RE = re.compile(r"^\s*:([^:\s]+):\s*(.*?)\s*$")

# Active timestamp, optionally followed by a range end:
#   <2024-01-10 Wed 10:00-11:00>   <2024-01-10 Wed>--<2024-01-12 Fri>
_TIMESTAMP = r"<\d{4}-\d{2}-\d{2}[^>\n]*>"
_TIMESTAMP_RE = re.compile(rf"{_TIMESTAMP}(?:--{_TIMESTAMP})?")
_SINGLE_TIMESTAMP_RE = re.compile(_TIMESTAMP)
_TIMESTAMP_PARTS_RE = re.compile(
    r"<(\d{4}-\d{2}-\d{2})(?:\s+[^\s\d>]+)?(?:\s+(\d{1,2}:\d{2})(?:-(\d{1,2}:\d{2}))?)?"
)

# Org's escape character; ends a title whose last word looks like tags
_ZERO_WIDTH_SPACE = "\u200b"

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_INDENT = "  "


@dataclass
class EntryBounds:
    """Location of an entry: lines [start, end) of path."""

    path: Path
    start: int
    end: int


@dataclass
class _OrgEntry:
    path: Path
    start: int
    end: int
    level: int
    title: str
    tags: str
    uid: str | None
    planning: int | None  # line index of a SCHEDULED/DEADLINE line
    drawer: tuple[int, int] | None  # line indices of :PROPERTIES: and :END:
    timestamp_line: int | None
    timestamp_span: tuple[int, int] | None

    @property
    def body_start(self) -> int:
        if self.drawer:
            return self.drawer[1] + 1
        if self.planning is not None:
            return self.planning + 1
        return self.start + 1


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def _parse_time(value: str | None) -> time | None:
    if not value:
        return None
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def parse_timestamp(text: str) -> tuple[date, time | None, date, time | None]:
    """Parse an Org timestamp or range into (start_date, start_time, end_date, end_time)."""
    parts = _SINGLE_TIMESTAMP_RE.findall(text)
    if not parts:
        raise ValueError(f"No active timestamp in {text!r}")
    first = _TIMESTAMP_PARTS_RE.match(parts[0])
    start_date = date.fromisoformat(first.group(1))
    start_time = _parse_time(first.group(2))
    if len(parts) > 1:
        second = _TIMESTAMP_PARTS_RE.match(parts[1])
        end_date = date.fromisoformat(second.group(1))
        end_time = _parse_time(second.group(2)) if start_time else None
        return start_date, start_time, end_date, end_time or start_time
    end_time = _parse_time(first.group(3)) or start_time
    return start_date, start_time, start_date, end_time


def _stamp(day: date, start: time | None = None, end: time | None = None) -> str:
    text = f"{day.isoformat()} {_DAY_NAMES[day.weekday()]}"
    if start is not None:
        text += f" {start:%H:%M}"
        if end is not None:
            text += f"-{end:%H:%M}"
    return f"<{text}>"


def format_timestamp(fields: EventFields) -> str:
    """Render the event time as an Org active timestamp or range."""
    if fields.all_day:
        if fields.end_date == fields.start_date:
            return _stamp(fields.start_date)
        return f"{_stamp(fields.start_date)}--{_stamp(fields.end_date)}"
    end_time = fields.end_time or fields.start_time
    if fields.end_date == fields.start_date:
        if end_time == fields.start_time:
            end_time = None
        return _stamp(fields.start_date, fields.start_time, end_time)
    return f"{_stamp(fields.start_date, fields.start_time)}--{_stamp(fields.end_date, end_time)}"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _heading_line(level: int, title: str, tags: str = "") -> str:
    title = " ".join(title.split())
    if not tags and _TAGS_RE.search(title):
        title += _ZERO_WIDTH_SPACE
    line = f"{'*' * level} {title}"
    if tags:
        line += f" {tags}"
    return line + "\n"


def _body_lines(body: str) -> list[str]:
    return [f"{_INDENT}{line}\n" if line.strip() else "\n" for line in body.splitlines()]


def format_entry(fields: EventFields, uid: str, level: int = 1) -> list[str]:
    """Lines of a complete new Org entry for an event."""
    return [
        _heading_line(level, fields.title),
        f"{_INDENT}:PROPERTIES:\n",
        f"{_INDENT}:ID:       {uid}\n",
        f"{_INDENT}:END:\n",
        f"{_INDENT}{format_timestamp(fields)}\n",
        *_body_lines(fields.body),
    ]


def _parse_entry(path: Path, lines: list[str], start: int, end: int) -> _OrgEntry:
    m = _HEADING_RE.match(lines[start].rstrip("\n"))
    text = m.group(2)
    tags_m = _TAGS_RE.search(text)
    title = text[: tags_m.start()] if tags_m else text.removesuffix(_ZERO_WIDTH_SPACE)
    tags = tags_m.group(1) if tags_m else ""

    i = start + 1
    planning = None
    if i < end and _PLANNING_RE.match(lines[i]):
        planning = i
        i += 1

    drawer = None
    uid = None
    if i < end and _DRAWER_START_RE.match(lines[i]):
        for j in range(i + 1, end):
            if _DRAWER_END_RE.match(lines[j]):
                drawer = (i, j)
                break
            prop = _PROPERTY_RE.match(lines[j])
            if prop and prop.group(1).upper() == "ID":
                uid = prop.group(2) or None
        if drawer is None:
            logger.warning(f"{path}:{i + 1}: unterminated property drawer")
            uid = None

    timestamp_line = timestamp_span = None
    for j in range(start + 1, end):
        if drawer and drawer[0] <= j <= drawer[1]:
            continue
        ts = _TIMESTAMP_RE.search(lines[j])
        if not ts:
            continue
        try:
            parse_timestamp(ts.group(0))
        except ValueError:
            logger.warning(f"{path}:{j + 1}: ignoring invalid timestamp {ts.group(0)}")
            continue
        timestamp_line, timestamp_span = j, ts.span()
        break

    return _OrgEntry(
        path=path,
        start=start,
        end=end,
        level=len(m.group(1)),
        title=title,
        tags=tags,
        uid=uid,
        planning=planning,
        drawer=drawer,
        timestamp_line=timestamp_line,
        timestamp_span=timestamp_span,
    )


def parse_entries(path: Path, lines: list[str]) -> list[_OrgEntry]:
    """Split an Org file into entries, one per heading."""
    headings = [i for i, line in enumerate(lines) if _HEADING_RE.match(line.rstrip("\n"))]
    entries = []
    for n, start in enumerate(headings):
        end = headings[n + 1] if n + 1 < len(headings) else len(lines)
        entries.append(_parse_entry(path, lines, start, end))
    return entries


def _is_timestamp_only(line: str, span: tuple[int, int]) -> bool:
    rest = line[: span[0]] + line[span[1] :]
    return not _PLANNING_RE.sub("", rest).strip()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class OrgFileStore:
    """Local store adapter over a fixed set of Org files.

    New events coming from the calendar are appended to ``inbox``, which is
    always part of the scanned file set.
    """

    def __init__(self, files: list[Path], inbox: Path, backup_file: Path | None = None):
        self.files = list(dict.fromkeys(files))
        if inbox not in self.files:
            self.files.append(inbox)
        self.inbox = inbox
        self.backup_file = backup_file
        self._index: dict[str, _OrgEntry] | None = None

    # ------------------------------------------------------------------ #
    # File access                                                          #
    # ------------------------------------------------------------------ #

    def _read(self, path: Path) -> list[str]:
        if not path.exists():
            if path == self.inbox:
                return []
            raise CalendarSyncError(f"Org file not found: {path}")
        return path.read_text(encoding="utf-8").splitlines(keepends=True)

    def _write(self, path: Path, lines: list[str]):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(lines), encoding="utf-8")
        self._index = None

    def _load(self) -> dict[str, _OrgEntry]:
        if self._index is not None:
            return self._index
        index: dict[str, _OrgEntry] = {}
        seen: dict[str, Path] = {}
        for path in self.files:
            for entry in parse_entries(path, self._read(path)):
                if entry.uid is None:
                    continue
                if entry.uid in seen:
                    raise LocalLookupError(
                        f"Duplicate ID {entry.uid} in {seen[entry.uid]} and {entry.path}"
                    )
                seen[entry.uid] = entry.path
                if entry.timestamp_span is not None:
                    index[entry.uid] = entry
        self._index = index
        return index

    def _entry(self, uid: str) -> _OrgEntry:
        entry = self._load().get(uid)
        if entry is None:
            raise LocalLookupError(f"No Org entry with ID {uid}")
        return entry

    # ------------------------------------------------------------------ #
    # Reading                                                              #
    # ------------------------------------------------------------------ #

    def assign_missing_ids(self) -> int:
        """Store a fresh ID in every timestamped heading that lacks one."""
        assigned = 0
        for path in self.files:
            lines = self._read(path)
            entries = parse_entries(path, lines)
            changed = False
            # Bottom-up so earlier line indices stay valid
            for entry in reversed(entries):
                if entry.uid is not None or entry.timestamp_span is None:
                    continue
                at = entry.body_start
                if entry.drawer is None and at < entry.end and _DRAWER_START_RE.match(lines[at]):
                    continue  # unterminated drawer, already warned about
                new_id = str(uuid.uuid4())
                if entry.drawer:
                    lines.insert(entry.drawer[0] + 1, f"{_INDENT}:ID:       {new_id}\n")
                else:
                    lines[at:at] = [
                        f"{_INDENT}:PROPERTIES:\n",
                        f"{_INDENT}:ID:       {new_id}\n",
                        f"{_INDENT}:END:\n",
                    ]
                logger.debug(f"Assigned ID {new_id} to '{entry.title}' in {path}")
                assigned += 1
                changed = True
            if changed:
                self._write(path, lines)
        return assigned

    def list_event_uids(self) -> list[str]:
        return list(self._load())

    def locate_entry_bounds(self, uid: str) -> EntryBounds:
        """Where the entry lives; for callers outside a sync run, which use IDs."""
        entry = self._entry(uid)
        return EntryBounds(entry.path, entry.start, entry.end)

    def entry_fields(self, uid: str) -> EventFields:
        """Title, time and body of the entry with the given ID."""
        entry = self._entry(uid)
        lines = self._read(entry.path)
        ts_line = lines[entry.timestamp_line]
        start_date, start_time, end_date, end_time = parse_timestamp(
            ts_line[slice(*entry.timestamp_span)]
        )

        body = []
        for j in range(entry.body_start, entry.end):
            if j == entry.timestamp_line and _is_timestamp_only(ts_line, entry.timestamp_span):
                continue
            body.append(lines[j])
        return EventFields(
            title=entry.title,
            start_date=start_date,
            start_time=start_time,
            end_date=end_date,
            end_time=end_time,
            body=textwrap.dedent("".join(body)).strip("\n"),
        )

    def export_event(self, uid: str) -> str:
        """The entry as a single VEVENT."""
        return ical.event_to_ical(uid, self.entry_fields(uid))

    def export_all(self) -> dict[str, str]:
        """Every event as a VEVENT, keyed by ID; sync runs export one at a time."""
        return {uid: self.export_event(uid) for uid in self.list_event_uids()}

    def fingerprint_of(self, uid: str) -> str:
        return ical.compute_hash(self.export_event(uid))

    # ------------------------------------------------------------------ #
    # Writing                                                              #
    # ------------------------------------------------------------------ #

    def write_new_entry(self, fields: EventFields, uid: str):
        """Append a new top-level entry to the inbox."""
        lines = self._read(self.inbox)
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.extend(format_entry(fields, uid))
        self._write(self.inbox, lines)
        logger.debug(f"Added '{fields.title}' ({uid}) to {self.inbox}")

    def rewrite_entry_fields(self, uid: str, fields: EventFields, mode: SyncChangeMode):
        """Overwrite title, timestamp and/or body of an existing entry."""
        entry = self._entry(uid)
        lines = self._read(entry.path)
        block = lines[entry.start : entry.end]
        ts_rel = entry.timestamp_line - entry.start
        span = entry.timestamp_span
        new_stamp = format_timestamp(fields)

        if mode.rewrites_title:
            block[0] = _heading_line(entry.level, fields.title, entry.tags)

        if mode is SyncChangeMode.ALL:
            prefix = block[: entry.body_start - entry.start]
            if ts_rel < len(prefix):
                line = prefix[ts_rel]
                prefix[ts_rel] = line[: span[0]] + new_stamp + line[span[1] :]
                stamp_lines = []
            else:
                stamp_lines = [f"{_INDENT}{new_stamp}\n"]
            block = prefix + stamp_lines + _body_lines(fields.body)
        elif mode.rewrites_timestamp:
            line = block[ts_rel]
            block[ts_rel] = line[: span[0]] + new_stamp + line[span[1] :]

        if block and not block[-1].endswith("\n"):
            block[-1] += "\n"
        lines[entry.start : entry.end] = block
        self._write(entry.path, lines)
        logger.debug(f"Rewrote {uid} in {entry.path} ({mode.value})")

    def delete_entry(self, uid: str) -> str:
        """Remove the entry from its file and return its text."""
        entry = self._entry(uid)
        lines = self._read(entry.path)
        removed = "".join(lines[entry.start : entry.end])
        if self.backup_file is not None:
            self._backup(uid, removed)
        del lines[entry.start : entry.end]
        self._write(entry.path, lines)
        logger.debug(f"Deleted {uid} from {entry.path}")
        return removed

    def _backup(self, uid: str, text: str):
        self.backup_file.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self.backup_file.open("a", encoding="utf-8") as f:
            f.write(f"# Deleted {stamp}, ID {uid}\n")
            f.write(text if text.endswith("\n") else text + "\n")
