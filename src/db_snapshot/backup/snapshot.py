"""JSON snapshot envelope: building, serializing, parsing and validating.

A snapshot is one JSON object holding a ``_metadata`` block followed by
one key per table mapping to that table's rows:

    {
      "_metadata": {
        "backup_version": "2.0",
        "backup_date": "2026-01-15T02:00:00+00:00",
        "total_tables": 38,
        "total_records": 12345,
        "tables_backed_up": ["profiles", "user_roles", ...]
      },
      "profiles": [{"id": "...", "full_name": "..."}, ...],
      ...
    }

Older snapshots have no ``_metadata`` block (a flat table -> rows map);
``SnapshotEnvelope.from_payload`` accepts both.

Usage:
    build = await build_snapshot(adapter, registry, page_size=1000)
    data = serialize_snapshot(build.envelope)

    report = validate_snapshot(json.loads(data), registry)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from db_snapshot.adapters.base import DatabaseClient
from db_snapshot.backup.paginator import DEFAULT_PAGE_SIZE, fetch_all_rows
from db_snapshot.backup.values import encode_row_json
from db_snapshot.errors import InvalidSnapshotError
from db_snapshot.outcome import Err
from db_snapshot.registry import TableRegistry
from db_snapshot.schema.models import CatalogSnapshot

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "2.0"
LEGACY_VERSION = "1.0"
SUPPORTED_VERSIONS = {SNAPSHOT_VERSION, LEGACY_VERSION}
METADATA_KEY = "_metadata"


class SnapshotMetadata(BaseModel):
    """The ``_metadata`` block of a snapshot."""

    model_config = ConfigDict(frozen=True)

    backup_version: str = SNAPSHOT_VERSION
    backup_date: str = ""
    total_tables: int = 0
    total_records: int = 0
    tables_backed_up: list[str] = Field(default_factory=list)


class SnapshotEnvelope(BaseModel):
    """A complete snapshot: metadata plus every table's rows in order."""

    model_config = ConfigDict(frozen=True)

    metadata: SnapshotMetadata
    tables: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)

    @property
    def record_counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}

    def to_payload(self) -> dict[str, Any]:
        """The snapshot as a JSON-ready dict, ``_metadata`` first."""
        payload: dict[str, Any] = {METADATA_KEY: self.metadata.model_dump()}
        payload.update(self.tables)
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> "SnapshotEnvelope":
        """Parse a versioned or legacy snapshot.

        Raises:
            InvalidSnapshotError: If *payload* is not an object, a table's
                rows are not a list of objects, or the metadata is malformed.
        """
        if not isinstance(payload, dict):
            raise InvalidSnapshotError("Invalid backup data format")

        tables: dict[str, list[dict[str, Any]]] = {}
        for name, rows in payload.items():
            if name == METADATA_KEY:
                continue
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                raise InvalidSnapshotError(f"Table '{name}' must be a list of row objects")
            tables[name] = rows

        raw_metadata = payload.get(METADATA_KEY)
        if raw_metadata is None:
            metadata = SnapshotMetadata(
                backup_version=LEGACY_VERSION,
                total_tables=len(tables),
                total_records=sum(len(rows) for rows in tables.values()),
                tables_backed_up=list(tables),
            )
        elif isinstance(raw_metadata, dict):
            try:
                metadata = SnapshotMetadata.model_validate(raw_metadata)
            except ValueError as e:
                raise InvalidSnapshotError(f"Invalid _metadata: {e}") from e
        else:
            raise InvalidSnapshotError("_metadata must be an object")

        return cls(metadata=metadata, tables=tables)


class SnapshotBuild(BaseModel):
    """Result of ``build_snapshot``: the envelope plus per-table fetch errors."""

    envelope: SnapshotEnvelope
    errors: list[str] = Field(default_factory=list)


def snapshot_timestamp(moment: datetime | None = None) -> str:
    """UTC ISO timestamp made safe for file names.

    Example:
        >>> snapshot_timestamp(datetime(2026, 1, 15, 2, 0, 0, 123000, tzinfo=timezone.utc))
        '2026-01-15T02-00-00-123Z'
    """
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S") + f"-{moment.microsecond // 1000:03d}Z"


async def build_snapshot(
    adapter: DatabaseClient,
    registry: TableRegistry,
    page_size: int = DEFAULT_PAGE_SIZE,
    catalog: CatalogSnapshot | None = None,
) -> SnapshotBuild:
    """Read every restorable registry table into a snapshot envelope.

    Tables are read one at a time in forward order; export-only tables
    (``restorable=False``) are left out.  A table whose fetch fails is
    recorded with no rows and its error is returned alongside.

    Args:
        adapter: Source database.
        registry: Tables to capture.
        page_size: Rows per page.
        catalog: Optional introspection result; when given, values are
            decoded with their column types (json columns stay JSON).
    """
    tables: dict[str, list[dict[str, Any]]] = {}
    errors: list[str] = []

    for descriptor in registry.restorable():
        outcome = await fetch_all_rows(adapter, descriptor.name, page_size)
        if isinstance(outcome, Err):
            errors.append(outcome.error)
            tables[descriptor.name] = []
            continue

        columns = {}
        if catalog is not None:
            table_catalog = catalog.table(descriptor.name)
            if table_catalog is not None:
                columns = {c.name: c for c in table_catalog.columns}

        tables[descriptor.name] = [encode_row_json(row, columns) for row in outcome.value]
        logger.info(f"Backed up {descriptor.name}: {len(tables[descriptor.name])} records")

    metadata = SnapshotMetadata(
        backup_version=SNAPSHOT_VERSION,
        backup_date=datetime.now(timezone.utc).isoformat(),
        total_tables=len(tables),
        total_records=sum(len(rows) for rows in tables.values()),
        tables_backed_up=list(tables),
    )
    return SnapshotBuild(envelope=SnapshotEnvelope(metadata=metadata, tables=tables), errors=errors)


def serialize_snapshot(envelope: SnapshotEnvelope) -> bytes:
    """UTF-8 JSON with two-space indentation."""
    return json.dumps(envelope.to_payload(), indent=2, ensure_ascii=False, default=str).encode("utf-8")


# ============================================================================
# Validation
# ============================================================================


class ValidationReport(BaseModel):
    """Outcome of ``validate_snapshot``.

    Example:
        >>> ValidationReport(valid=True).errors
        []
    """

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def validate_snapshot(payload: Any, registry: TableRegistry) -> ValidationReport:
    """Check a decoded snapshot before restoring it.

    Errors (restore would be refused): payload is not an object, rows are
    not lists of objects, malformed ``_metadata``.

    Warnings: legacy or unknown version, metadata counts that disagree with
    the rows, tables the registry does not know or does not restore (they
    are skipped on restore).
    """
    errors: list[str] = []
    warnings: list[str] = []

    try:
        envelope = SnapshotEnvelope.from_payload(payload)
    except InvalidSnapshotError as e:
        errors.append(str(e))
        return ValidationReport(valid=False, errors=errors, warnings=warnings)

    metadata = envelope.metadata
    if metadata.backup_version not in SUPPORTED_VERSIONS:
        warnings.append(
            f"Unsupported backup version '{metadata.backup_version}' (expected '{SNAPSHOT_VERSION}')"
        )
    elif metadata.backup_version == LEGACY_VERSION:
        warnings.append("Legacy backup without _metadata")

    actual_records = sum(envelope.record_counts.values())
    if metadata.total_records != actual_records:
        warnings.append(
            f"Metadata total_records {metadata.total_records} does not match "
            f"{actual_records} rows in backup"
        )
    if metadata.total_tables != len(envelope.tables):
        warnings.append(
            f"Metadata total_tables {metadata.total_tables} does not match "
            f"{len(envelope.tables)} tables in backup"
        )

    for name in envelope.tables:
        descriptor = registry.get(name)
        if descriptor is None:
            warnings.append(f"Unknown table '{name}' will be skipped")
        elif not descriptor.restorable:
            warnings.append(f"Table '{name}' is export-only and will be skipped")

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)


def validate_snapshot_file(path: str | Path, registry: TableRegistry) -> ValidationReport:
    """Read a snapshot file and validate it.

    This function is **sync** -- it only reads a local JSON file with no
    database I/O.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except FileNotFoundError:
        return ValidationReport(valid=False, errors=[f"Backup file not found: {path}"])
    except json.JSONDecodeError as e:
        return ValidationReport(valid=False, errors=[f"Invalid JSON: {e}"])

    return validate_snapshot(payload, registry)
