"""
Infrastructure layer: storage provider contract and the local provider.

A provider persists whole collections of plain-dict records:
`load(collection_key)` returns every record (empty when nothing is stored)
and `save(collection_key, records)` replaces the stored collection as one
unit.
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Protocol

from orchard360.domain.errors import StorageUnavailable

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class StorageProvider(Protocol):
    """Read/write contract consumed by the entity store."""
    
    async def load(self, collection_key: str) -> List[Record]:
        ...
    
    async def save(self, collection_key: str, records: List[Record]) -> None:
        ...
    
    async def close(self) -> None:
        ...


class LocalStorageProvider:
    """
    Durable key-value provider backed by one JSON file per collection.
    
    Writes go to a temporary file that then replaces the collection file,
    so a collection is never left half-written. File I/O runs in a worker
    thread to keep the event loop free.
    """
    
    def __init__(self, data_dir: str | Path):
        """
        Initialize the provider.
        
        Args:
            data_dir: Directory for the collection files (created on demand)
        """
        self.data_dir = Path(data_dir)
    
    def _path_for(self, collection_key: str) -> Path:
        return self.data_dir / f"{collection_key}.json"
    
    async def load(self, collection_key: str) -> List[Record]:
        """
        Load a collection.
        
        Args:
            collection_key: Collection to read
            
        Returns:
            List of records, empty when the collection was never saved
            
        Raises:
            StorageUnavailable: If the file exists but cannot be read
        """
        path = self._path_for(collection_key)
        if not path.exists():
            return []

        try:
            data = await asyncio.to_thread(self._read_json, path)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageUnavailable(
                f"Could not read collection '{collection_key}': {e}",
                collection=collection_key,
            )
        
        if not isinstance(data, list):
            raise StorageUnavailable(
                f"Collection '{collection_key}' is not a list of records",
                collection=collection_key,
            )
        return data
    
    async def save(self, collection_key: str, records: List[Record]) -> None:
        """
        Replace a collection with `records`.
        
        Args:
            collection_key: Collection to write
            records: Full collection contents
            
        Raises:
            StorageUnavailable: If the collection cannot be written
        """
        path = self._path_for(collection_key)
        try:
            await asyncio.to_thread(self._write_json, path, records)
        except OSError as e:
            raise StorageUnavailable(
                f"Could not write collection '{collection_key}': {e}",
                collection=collection_key,
            )

        logger.debug(f"Saved {len(records)} records to {path}")

    @staticmethod
    def _read_json(path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_json(self, path: Path, records: List[Record]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{path.stem}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
    
    async def close(self) -> None:
        """Nothing to release for file storage."""
        return None
