"""
Persistence for column mappings.

Mappings are stored in a local JSON file, keyed by import surface and by
column signature (the exact ordered list of source headers). Single writer,
last write wins.
"""

import json
from pathlib import Path
from typing import Optional, Protocol
import structlog

from config import settings
from models.imports import CanonicalField, ColumnMapping, ImportType

logger = structlog.get_logger(__name__)


def column_signature(columns: list[str]) -> str:
    """Serialize an ordered header list into a mapping cache key."""
    return json.dumps(list(columns), ensure_ascii=False)


class MappingStore(Protocol):
    """What the column mapper needs from a persistence backend."""

    def load(self, import_type: ImportType, columns: list[str]) -> Optional[ColumnMapping]:
        ...

    def save(self, import_type: ImportType, columns: list[str], mapping: ColumnMapping) -> None:
        ...

    def delete(self, import_type: ImportType, columns: list[str]) -> None:
        ...


class JsonMappingStore:
    """
    File-backed mapping store.

    Layout:
        {"invoices": {"[\"Customer\", \"Date\", ...]": {"customer_id": "Customer", ...}}}
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.import_mapping_store_path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # A corrupt file means no saved mappings; the next save rewrites it
            logger.warning("mapping_store_unreadable", path=str(self.path), error=str(e))
            return {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def load(self, import_type: ImportType, columns: list[str]) -> Optional[ColumnMapping]:
        """Saved mapping for this exact column signature, or None."""
        saved = self._read().get(import_type.value, {}).get(column_signature(columns))
        if saved is None:
            return None

        mapping: ColumnMapping = {}
        for key, column in saved.items():
            try:
                mapping[CanonicalField(key)] = column
            except ValueError:
                logger.warning("mapping_store_unknown_field", field=key)
        return mapping

    def save(self, import_type: ImportType, columns: list[str], mapping: ColumnMapping) -> None:
        data = self._read()
        surface = data.setdefault(import_type.value, {})
        surface[column_signature(columns)] = {
            field.value: column for field, column in mapping.items()
        }
        self._write(data)
        logger.debug(
            "mapping_saved",
            import_type=import_type.value,
            columns=len(columns),
            mapped=len(mapping)
        )

    def delete(self, import_type: ImportType, columns: list[str]) -> None:
        data = self._read()
        surface = data.get(import_type.value, {})
        if surface.pop(column_signature(columns), None) is not None:
            self._write(data)
            logger.info("mapping_deleted", import_type=import_type.value)
