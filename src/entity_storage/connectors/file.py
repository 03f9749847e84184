"""On-disk reference connector: one JSON file per tenant plus a tenant index.

Layout under ``directory``::

    <base_filename>-tenant-index.json   sorted unique list of tenant ids
    <base_filename>-<tenant>.json       the tenant's records in insertion order

Every rewrite goes to a sibling temporary file which is flushed, fsynced and
renamed over the target, so readers only ever see a complete pre- or
post-image.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
import threading
import weakref
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from entity_storage.config import ConnectorOptions, FileEntityStorageConnectorConfig
from entity_storage.connectors.base import BaseEntityStorageConnector, first_match
from entity_storage.errors import (
    BackendUnavailableError,
    BootstrapFailedError,
    ConfigurationError,
    CorruptStoreError,
)
from entity_storage.query import QueryResult, execute_query
from entity_storage.schema import EntityDescriptor, SchemaRegistry, json_default

if TYPE_CHECKING:
    from entity_storage.conditions import Condition
    from entity_storage.query import SortSpec

TENANT_INDEX_SUFFIX = "tenant-index"

# (directory, base_filename) -> live connector; one writer per store
_claims: weakref.WeakValueDictionary[tuple[str, str], FileEntityStorageConnector] = (
    weakref.WeakValueDictionary()
)
_claims_lock = threading.Lock()


def tenant_file_token(tenant: str) -> str:
    """Filename-safe form of a tenant id; safe ids are used verbatim."""
    token = quote(tenant, safe="")
    if token == TENANT_INDEX_SUFFIX:
        # keep tenant files from shadowing the index file
        token = "%74" + token[1:]
    return token


def _read_json(path: Path) -> Any | None:
    """Read and decode a JSON file, returning None when it does not exist."""
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise BackendUnavailableError("read", f"{path}: {e}", str(e)) from e
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptStoreError(str(path), str(e)) from e


def _write_json_atomic(path: Path, data: Any, abort: threading.Event | None = None) -> bool:
    """Atomically replace path with the JSON encoding of data.

    Returns False, leaving the target untouched, when abort is set before the rename.
    """
    payload = json.dumps(data, ensure_ascii=False, indent="\t").encode("utf-8")
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if abort is not None and abort.is_set():
            os.unlink(tmp_name)
            return False
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    _fsync_directory(path.parent)
    return True


def _fsync_directory(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class FileEntityStorageConnector(BaseEntityStorageConnector):
    """Durable connector mirroring the in-memory semantics on the filesystem."""

    def __init__(
        self,
        options: ConnectorOptions,
        *,
        registry: SchemaRegistry | None = None,
    ) -> None:
        super().__init__(options, registry=registry)
        config = options.config
        if not isinstance(config, FileEntityStorageConnectorConfig):
            raise ConfigurationError(
                f"{self.class_name} expects FileEntityStorageConnectorConfig, "
                f"got {type(config).__name__}"
            )
        if not config.directory:
            raise ConfigurationError("FileEntityStorageConnectorConfig.directory must not be empty")
        if not config.base_filename or any(
            sep in config.base_filename for sep in (os.sep, "/", os.altsep or "/")
        ):
            raise ConfigurationError(
                "FileEntityStorageConnectorConfig.base_filename must be a plain file name"
            )

        self._directory = Path(config.directory).resolve()
        self._base_filename = config.base_filename
        self._claim_key = (str(self._directory), self._base_filename)
        with _claims_lock:
            owner = _claims.get(self._claim_key)
            if owner is not None and owner is not self:
                raise ConfigurationError(
                    f"Store '{self._base_filename}' in '{self._directory}' is already "
                    "in use by another FileEntityStorageConnector"
                )
            _claims[self._claim_key] = self

        self._tenant_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._index_lock = asyncio.Lock()
        self._known_tenants: set[str] = set()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def tenant_index_path(self) -> Path:
        return self._directory / f"{self._base_filename}-{TENANT_INDEX_SUFFIX}.json"

    def tenant_path(self, tenant: str) -> Path:
        return self._directory / f"{self._base_filename}-{tenant_file_token(tenant)}.json"

    # --- Lifecycle ---

    async def _bootstrap_backend(self, descriptor: EntityDescriptor, *, first: bool) -> None:
        directory = self._directory
        log_data = {"directory": str(directory)}
        if not directory.exists():
            self._logger.info("directoryCreating %s", log_data)
            try:
                await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
            except OSError as e:
                self._logger.error("directoryCreateFailed %s: %s", log_data, e)
                raise BootstrapFailedError(
                    f"Could not create directory '{directory}'", str(e)
                ) from e
            self._logger.info("directoryCreated %s", log_data)
        else:
            self._logger.info("directoryExists %s", log_data)

        index_path = self.tenant_index_path
        async with self._index_lock:
            tenants = await asyncio.to_thread(_read_json, index_path)
            if tenants is None:
                await asyncio.to_thread(_write_json_atomic, index_path, [])
                self._logger.info("tenantIndexCreated %s", {"path": str(index_path)})
                tenants = []
            if not isinstance(tenants, list) or not all(isinstance(t, str) for t in tenants):
                raise CorruptStoreError(str(index_path), "tenant index must be a list of strings")
            self._known_tenants = set(tenants)

    async def close(self) -> None:
        await super().close()
        with _claims_lock:
            if _claims.get(self._claim_key) is self:
                del _claims[self._claim_key]

    # --- File helpers ---

    async def _read_tenant(self, tenant: str) -> list[dict[str, Any]]:
        path = self.tenant_path(tenant)
        records = await asyncio.to_thread(_read_json, path)
        if records is None:
            return []
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise CorruptStoreError(str(path), "tenant file must be a list of objects")
        return records

    async def _write(self, path: Path, data: Any) -> None:
        abort = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(_write_json_atomic, path, data, abort))
        try:
            await asyncio.shield(worker)
        except asyncio.CancelledError:
            abort.set()
            # the caller keeps its lock until the thread can no longer rename
            await asyncio.wait({worker})
            if not worker.cancelled():
                worker.exception()
            raise
        except OSError as e:
            raise BackendUnavailableError("write", f"{path}: {e}", str(e)) from e

    async def _ensure_tenant_indexed(self, tenant: str) -> None:
        if tenant in self._known_tenants:
            return
        async with self._index_lock:
            index_path = self.tenant_index_path
            tenants = await asyncio.to_thread(_read_json, index_path)
            if tenants is None:
                tenants = []
            if not isinstance(tenants, list):
                raise CorruptStoreError(str(index_path), "tenant index must be a list of strings")
            if tenant not in tenants:
                updated = sorted(set(tenants) | {tenant})
                await self._write(index_path, updated)
                self._logger.info("tenantAdded %s", {"tenant": tenant})
                tenants = updated
            self._known_tenants = set(tenants)

    # --- Contract ---

    async def get(
        self, partition: str, id: str, secondary_index: str | None = None
    ) -> dict[str, Any] | None:
        descriptor = self._ready(partition)
        self._check_id(descriptor, id)
        lookup = self._lookup_property(descriptor, secondary_index)
        records = await self._read_tenant(partition)
        return first_match(records, lookup, id, descriptor.primary_key.name)

    async def set(self, partition: str, entity: dict[str, Any]) -> None:
        descriptor = self._ready(partition)
        key = self._validate(descriptor, entity)
        pk = descriptor.primary_key.name
        stored = json.loads(json.dumps(entity, default=json_default))

        # indexed before the first write so a tenant file is never unlisted
        await self._ensure_tenant_indexed(partition)
        async with self._tenant_locks[partition]:
            records = await self._read_tenant(partition)
            for i, record in enumerate(records):
                if record.get(pk) == key:
                    records[i] = stored
                    break
            else:
                records.append(stored)
            await self._write(self.tenant_path(partition), records)
        self._logger.debug("%s set '%s' in tenant '%s'", self.class_name, key, partition)

    async def remove(self, partition: str, id: str) -> None:
        descriptor = self._ready(partition)
        self._check_id(descriptor, id)
        pk = descriptor.primary_key.name

        async with self._tenant_locks[partition]:
            records = await self._read_tenant(partition)
            remaining = [r for r in records if r.get(pk) != id]
            if len(remaining) == len(records):
                return
            await self._write(self.tenant_path(partition), remaining)
        self._logger.debug("%s removed '%s' from tenant '%s'", self.class_name, id, partition)

    async def query(
        self,
        partition: str,
        conditions: Condition | None = None,
        sort_properties: SortSpec | None = None,
        properties: list[str] | None = None,
        cursor: str | None = None,
        page_size: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> QueryResult:
        descriptor = self._ready(partition)
        records = await self._read_tenant(partition)
        return execute_query(
            records,
            descriptor,
            conditions,
            sort_properties,
            properties,
            cursor,
            page_size,
            cancel_event=cancel_event,
        )

    async def tenants(self) -> list[str]:
        """Return the tenant ids recorded in the tenant index."""
        tenants = await asyncio.to_thread(_read_json, self.tenant_index_path)
        return list(tenants or [])
