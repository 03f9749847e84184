"""Tests specific to the file connector: on-disk layout, durability and store ownership."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone

import pytest

from entity_storage.config import ConnectorOptions, MemoryEntityStorageConnectorConfig
from entity_storage.connectors import FileEntityStorageConnector
from entity_storage.connectors import file as file_module
from entity_storage.connectors.file import _read_json, _write_json_atomic, tenant_file_token
from entity_storage.errors import (
    BackendUnavailableError,
    BootstrapFailedError,
    ConfigurationError,
    CorruptStoreError,
)


class TestLayout:
    async def test_tenant_file_contents(self, file_connector, store_dir):
        await file_connector.set("t1", {"id": "a", "name": "alpha"})

        tenant_file = store_dir / "store-t1.json"
        raw = tenant_file.read_text(encoding="utf-8")
        assert json.loads(raw) == [{"id": "a", "name": "alpha"}]
        assert "\n\t{" in raw

        index = json.loads((store_dir / "store-tenant-index.json").read_text(encoding="utf-8"))
        assert index == ["t1"]

    async def test_index_is_sorted_and_unique(self, file_connector, store_dir):
        for tenant in ("zeta", "alpha", "zeta", "mid"):
            await file_connector.set(tenant, {"id": "a"})
        index = json.loads((store_dir / "store-tenant-index.json").read_text(encoding="utf-8"))
        assert index == ["alpha", "mid", "zeta"]
        assert await file_connector.tenants() == ["alpha", "mid", "zeta"]

    async def test_insertion_order_on_disk(self, file_connector, store_dir):
        for key in ("c", "a", "b"):
            await file_connector.set("t1", {"id": key})
        await file_connector.set("t1", {"id": "a", "n": 1})
        on_disk = json.loads((store_dir / "store-t1.json").read_text(encoding="utf-8"))
        assert on_disk == [{"id": "c"}, {"id": "a", "n": 1}, {"id": "b"}]

    async def test_remove_of_absent_key_leaves_file_alone(self, file_connector, store_dir):
        await file_connector.set("t1", {"id": "a"})
        tenant_file = store_dir / "store-t1.json"
        before = tenant_file.stat().st_mtime_ns
        await file_connector.remove("t1", "zzz")
        assert tenant_file.stat().st_mtime_ns == before

    async def test_unknown_tenant_has_no_file(self, file_connector, store_dir):
        assert await file_connector.get("ghost", "a") is None
        assert not (store_dir / "store-ghost.json").exists()

    async def test_datetimes_stored_as_iso(self, file_connector, store_dir):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await file_connector.set("t1", {"id": "a", "created": created})
        assert await file_connector.get("t1", "a") == {
            "id": "a",
            "created": "2024-01-01T00:00:00+00:00",
        }

    async def test_unicode_is_written_verbatim(self, file_connector, store_dir):
        await file_connector.set("t1", {"id": "a", "name": "café"})
        assert "café" in (store_dir / "store-t1.json").read_text(encoding="utf-8")


class TestTenantTokens:
    @pytest.mark.parametrize(
        ("tenant", "token"),
        [
            ("t1", "t1"),
            ("did:iota:0x12", "did%3Aiota%3A0x12"),
            ("a/b", "a%2Fb"),
            ("..", ".."),
            ("tenant-index", "%74enant-index"),
        ],
    )
    def test_token(self, tenant, token):
        assert tenant_file_token(tenant) == token

    async def test_reserved_tenant_does_not_clobber_index(self, file_connector, store_dir):
        await file_connector.set("tenant-index", {"id": "a"})
        assert (store_dir / "store-%74enant-index.json").exists()
        assert await file_connector.tenants() == ["tenant-index"]
        assert await file_connector.get("tenant-index", "a") == {"id": "a"}

    async def test_separator_in_tenant(self, file_connector, store_dir):
        await file_connector.set("a/b", {"id": "x"})
        assert (store_dir / "store-a%2Fb.json").exists()
        assert await file_connector.get("a/b", "x") == {"id": "x"}


class TestBootstrap:
    async def test_creates_directory_and_index(
        self, item_schema, store_dir, caplog, new_file_connector
    ):
        caplog.set_level(logging.INFO, logger="entity_storage")
        connector = new_file_connector(store_dir)
        await connector.bootstrap()
        try:
            assert store_dir.is_dir()
            index = store_dir / "store-tenant-index.json"
            assert json.loads(index.read_text(encoding="utf-8")) == []
            messages = [r.getMessage() for r in caplog.records]
            assert any(m.startswith("directoryCreating") for m in messages)
            assert any(m.startswith("directoryCreated") for m in messages)
            assert any(m.startswith("tenantIndexCreated") for m in messages)
        finally:
            await connector.close()

    async def test_repeat_bootstrap_keeps_data(self, file_connector, store_dir, caplog):
        await file_connector.set("t1", {"id": "a"})
        caplog.set_level(logging.INFO, logger="entity_storage")
        await file_connector.bootstrap()
        assert await file_connector.get("t1", "a") == {"id": "a"}
        assert await file_connector.tenants() == ["t1"]
        assert any(r.getMessage().startswith("directoryExists") for r in caplog.records)

    async def test_reopen_sees_existing_store(self, item_schema, store_dir, new_file_connector):
        first = new_file_connector(store_dir)
        await first.bootstrap()
        await first.set("t1", {"id": "a", "name": "alpha"})
        await first.close()

        second = new_file_connector(store_dir)
        await second.bootstrap()
        try:
            assert await second.get("t1", "alpha", "name") == {"id": "a", "name": "alpha"}
        finally:
            await second.close()

    async def test_directory_creation_failure(
        self, item_schema, tmp_path, caplog, new_file_connector
    ):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        connector = new_file_connector(blocker / "es")
        caplog.set_level(logging.ERROR, logger="entity_storage")
        with pytest.raises(BootstrapFailedError):
            await connector.bootstrap()
        assert any(r.getMessage().startswith("directoryCreateFailed") for r in caplog.records)
        await connector.close()

    async def test_corrupt_index_fails_bootstrap(
        self, item_schema, store_dir, new_file_connector
    ):
        store_dir.mkdir(parents=True)
        (store_dir / "store-tenant-index.json").write_text("{oops", encoding="utf-8")
        connector = new_file_connector(store_dir)
        with pytest.raises(BootstrapFailedError) as exc_info:
            await connector.bootstrap()
        assert isinstance(exc_info.value.__cause__, CorruptStoreError)
        await connector.close()


class TestCorruption:
    async def test_corrupt_tenant_is_isolated(self, file_connector, store_dir):
        await file_connector.set("t1", {"id": "a"})
        (store_dir / "store-t2.json").write_text("not json", encoding="utf-8")

        with pytest.raises(CorruptStoreError) as exc_info:
            await file_connector.get("t2", "a")
        assert exc_info.value.kind == "corrupt-store"
        with pytest.raises(CorruptStoreError):
            await file_connector.query("t2")
        assert await file_connector.get("t1", "a") == {"id": "a"}

    async def test_wrong_shape_is_corrupt(self, file_connector, store_dir):
        (store_dir / "store-t3.json").write_text('{"id": "a"}', encoding="utf-8")
        with pytest.raises(CorruptStoreError):
            await file_connector.query("t3")


class TestAtomicWrite:
    def test_replaces_target(self, tmp_path):
        target = tmp_path / "data.json"
        target.write_text("[]", encoding="utf-8")
        assert _write_json_atomic(target, [{"id": "a"}]) is True
        assert json.loads(target.read_text(encoding="utf-8")) == [{"id": "a"}]
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_abort_before_rename_keeps_old_image(self, tmp_path):
        target = tmp_path / "data.json"
        target.write_text("[1]", encoding="utf-8")
        abort = threading.Event()
        abort.set()
        assert _write_json_atomic(target, [2], abort) is False
        assert target.read_text(encoding="utf-8") == "[1]"
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    def test_encoding_failure_cleans_up(self, tmp_path):
        target = tmp_path / "data.json"
        with pytest.raises(TypeError):
            _write_json_atomic(target, [object()])
        assert list(tmp_path.iterdir()) == []


class TestOwnership:
    async def test_second_instance_is_rejected(
        self, file_connector, store_dir, new_file_connector
    ):
        with pytest.raises(ConfigurationError, match="already in use"):
            new_file_connector(store_dir)

    async def test_other_base_filename_is_allowed(
        self, file_connector, store_dir, new_file_connector
    ):
        other = new_file_connector(store_dir, base_filename="other")
        await other.bootstrap()
        try:
            await other.set("t1", {"id": "a"})
            assert await file_connector.get("t1", "a") is None
        finally:
            await other.close()

    async def test_close_releases_claim(self, item_schema, store_dir, new_file_connector):
        first = new_file_connector(store_dir)
        await first.close()
        second = new_file_connector(store_dir)
        await second.close()

    def test_rejects_foreign_config(self, item_schema):
        options = ConnectorOptions(
            entity_schema="Item", config=MemoryEntityStorageConnectorConfig()
        )
        with pytest.raises(ConfigurationError, match="FileEntityStorageConnectorConfig"):
            FileEntityStorageConnector(options)

    @pytest.mark.parametrize("base_filename", ["", "a/b"])
    def test_rejects_bad_base_filename(
        self, item_schema, tmp_path, base_filename, new_file_connector
    ):
        with pytest.raises(ConfigurationError):
            new_file_connector(tmp_path, base_filename=base_filename)


class _GatedTenantWrites:
    """Stands in for the atomic writer and holds writes to one file until released."""

    def __init__(self, path):
        self.path = path
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, path, data, abort=None):
        if path == self.path:
            self.entered.set()
            self.release.wait(5)
        return _write_json_atomic(path, data, abort)


class TestCancellation:
    async def test_cancelled_write_keeps_tenant_lock(self, file_connector, monkeypatch):
        await file_connector.set("t1", {"id": "a", "n": 0})
        gate = _GatedTenantWrites(file_connector.tenant_path("t1"))
        monkeypatch.setattr(file_module, "_write_json_atomic", gate)

        first = asyncio.create_task(file_connector.set("t1", {"id": "a", "n": 1}))
        assert await asyncio.to_thread(gate.entered.wait, 5)
        second = asyncio.create_task(file_connector.set("t1", {"id": "a", "n": 2}))
        await asyncio.sleep(0.05)
        first.cancel()
        await asyncio.sleep(0.05)

        assert file_connector._tenant_locks["t1"].locked()
        assert not second.done()

        gate.release.set()
        with pytest.raises(asyncio.CancelledError):
            await first
        await second
        assert await file_connector.get("t1", "a") == {"id": "a", "n": 2}
        assert not file_connector._tenant_locks["t1"].locked()

    async def test_cancelled_first_write_leaves_tenant_indexed(
        self, file_connector, store_dir, monkeypatch
    ):
        gate = _GatedTenantWrites(file_connector.tenant_path("fresh"))
        monkeypatch.setattr(file_module, "_write_json_atomic", gate)

        task = asyncio.create_task(file_connector.set("fresh", {"id": "a"}))
        assert await asyncio.to_thread(gate.entered.wait, 5)
        task.cancel()
        gate.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        index = json.loads((store_dir / "store-tenant-index.json").read_text(encoding="utf-8"))
        assert index == ["fresh"]
        assert not (store_dir / "store-fresh.json").exists()
        assert await file_connector.tenants() == ["fresh"]
        assert await file_connector.get("fresh", "a") is None
        assert not list(store_dir.glob(".*.tmp"))

    async def test_failed_first_write_leaves_tenant_indexed(
        self, file_connector, store_dir, monkeypatch
    ):
        tenant_path = file_connector.tenant_path("fresh")

        def failing_write(path, data, abort=None):
            if path == tenant_path:
                raise OSError("disk full")
            return _write_json_atomic(path, data, abort)

        monkeypatch.setattr(file_module, "_write_json_atomic", failing_write)
        with pytest.raises(BackendUnavailableError):
            await file_connector.set("fresh", {"id": "a"})
        assert await file_connector.tenants() == ["fresh"]
        assert await file_connector.get("fresh", "a") is None


class TestConcurrency:
    async def test_concurrent_sets_on_one_tenant(self, file_connector, store_dir):
        await asyncio.gather(
            *(file_connector.set("t1", {"id": f"k{i:02d}", "n": i}) for i in range(50))
        )
        on_disk = json.loads((store_dir / "store-t1.json").read_text(encoding="utf-8"))
        assert sorted(r["id"] for r in on_disk) == [f"k{i:02d}" for i in range(50)]
        assert (await file_connector.query("t1", page_size=100)).total_entities == 50
        assert await file_connector.tenants() == ["t1"]

    async def test_concurrent_sets_and_removes(self, file_connector):
        for i in range(20):
            await file_connector.set("t1", {"id": f"k{i:02d}"})
        await asyncio.gather(
            *(file_connector.remove("t1", f"k{i:02d}") for i in range(0, 20, 2)),
            *(file_connector.set("t1", {"id": f"k{i:02d}"}) for i in range(20, 30)),
        )
        result = await file_connector.query("t1", page_size=100)
        expected = [f"k{i:02d}" for i in range(1, 20, 2)] + [f"k{i:02d}" for i in range(20, 30)]
        assert [e["id"] for e in result.entities] == expected

    async def test_reads_overlapping_writes_see_whole_images(self, file_connector, store_dir):
        await file_connector.set("t1", {"id": "k00", "n": 0})
        tenant_file = store_dir / "store-t1.json"
        operations = []
        for i in range(1, 30):
            operations.append(file_connector.set("t1", {"id": f"k{i:02d}", "n": i}))
            operations.append(file_connector.query("t1", page_size=100))
            operations.append(asyncio.to_thread(_read_json, tenant_file))

        results = await asyncio.gather(*operations)

        pages = results[1::3]
        raw_images = results[2::3]
        for page in pages:
            assert page.total_entities == len(page.entities) >= 1
            assert all(e["n"] == int(e["id"][1:]) for e in page.entities)
        for image in raw_images:
            assert isinstance(image, list) and len(image) >= 1
            assert all(r["n"] == int(r["id"][1:]) for r in image)
        assert (await file_connector.query("t1", page_size=100)).total_entities == 30
