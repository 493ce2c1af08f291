"""
Tests for isodroid.app.manager.

Covers:
- Privilege gating of every operation
- Gadget on/off and its effect on the catalog
- Adding, mounting, ejecting and removing disk items
- Reconciling the catalog with the live LUN slots
- The background worker
"""

import threading
from pathlib import Path

import pytest

from isodroid.app.manager import GadgetManager
from isodroid.domain.models import DiskItem, DiskMode
from isodroid.domain.results import ErrorKind
from isodroid.gadget.lock import get_active_operation


@pytest.fixture
def enabled_manager(manager):
    assert manager.turn_on().ok
    return manager


@pytest.fixture
def iso_item(enabled_manager, iso_file):
    result = enabled_manager.add_item(DiskMode.ISO, str(iso_file), "Debian")
    assert result.ok, result.message
    return result.value


class TestPrivilege:
    """Test that nothing privileged runs before root is confirmed."""

    def test_unprobed_manager_refuses(self, fake_executor, catalog, gadget_paths, iso_file):
        """Test operations fail with PRIVILEGE_DENIED before check_privilege."""
        fake_executor.privileged = None
        manager = GadgetManager(fake_executor, catalog, gadget_paths)
        try:
            for result in (
                manager.turn_on(),
                manager.turn_off(),
                manager.add_item("iso", str(iso_file), "x"),
                manager.mount_item("any"),
                manager.eject_item("any"),
            ):
                assert result.kind is ErrorKind.PRIVILEGE_DENIED
            assert manager.query_configured() is False
            assert manager.reconcile() == []
            assert fake_executor.calls == []
        finally:
            manager.shutdown()

    def test_check_privilege_updates_observable(self, fake_executor, catalog, gadget_paths):
        manager = GadgetManager(fake_executor, catalog, gadget_paths)
        seen = []
        manager.rooted.add_listener(seen.append)
        try:
            assert manager.check_privilege() is True
            assert manager.is_rooted
            assert seen == [True]
        finally:
            manager.shutdown()

    def test_initialize_without_root(self, fake_executor, catalog, gadget_paths, mocker):
        """Test a failed probe leaves everything off."""
        mocker.patch.object(fake_executor, "probe", return_value=False)
        manager = GadgetManager(fake_executor, catalog, gadget_paths)
        try:
            manager.initialize()

            assert manager.is_rooted is False
            assert manager.gadget_enabled.value is False
            assert manager.charging_suspended.value is False
        finally:
            manager.shutdown()


class TestGadget:
    """Test turning the gadget on and off."""

    def test_turn_on(self, manager, gadget_paths):
        seen = []
        manager.gadget_enabled.add_listener(seen.append)

        result = manager.turn_on()

        assert result.ok
        assert seen == [True]
        assert manager.query_configured() is True
        assert [slot.index for slot in manager.luns.list_slots()] == [0, 1, 2]

    def test_turn_on_uses_max_devices(self, fake_executor, catalog, gadget_paths):
        manager = GadgetManager(
            fake_executor, catalog, gadget_paths, max_devices_provider=lambda: 2
        )
        try:
            manager.check_privilege()
            manager.turn_on()
            assert manager.gadget.surface.lun_indices() == [0, 1]
        finally:
            manager.shutdown()

    def test_turn_on_deactivates_items(self, enabled_manager, iso_item, catalog):
        """Test re-enabling empties every slot, so no item stays active."""
        enabled_manager.mount_item(iso_item.id)

        enabled_manager.turn_on()

        assert not catalog.get(iso_item.id).is_active

    def test_turn_off_deactivates_items(self, enabled_manager, iso_item, catalog):
        """Test turning off leaves no item active."""
        enabled_manager.mount_item(iso_item.id)

        result = enabled_manager.turn_off()

        assert result.ok
        assert enabled_manager.gadget_enabled.value is False
        assert all(not item.is_active for item in catalog.list())
        assert enabled_manager.query_configured() is False

    def test_turn_off_leaves_slot_clearing_to_disable(self, enabled_manager, iso_item, mocker):
        """Test no per-item eject runs after the gadget is disabled."""
        enabled_manager.mount_item(iso_item.id)
        eject = mocker.spy(enabled_manager.luns, "eject")

        assert enabled_manager.turn_off().ok

        eject.assert_not_called()

    def test_turn_off_failure_reconciles(
        self, enabled_manager, iso_item, catalog, fake_executor, mocker
    ):
        """Test a failed disable leaves the catalog matching the slots."""
        enabled_manager.mount_item(iso_item.id)
        mocker.patch.object(fake_executor, "_op_remove", side_effect=OSError("busy"))

        result = enabled_manager.turn_off()

        assert result.kind is ErrorKind.EXECUTION_FAILURE
        assert enabled_manager.query_configured() is True
        assert not catalog.get(iso_item.id).is_active

    def test_turn_on_failure_reconciles(
        self, enabled_manager, iso_item, catalog, fake_executor, mocker
    ):
        """Test a failed enable leaves the catalog matching the slots."""
        enabled_manager.mount_item(iso_item.id)
        mocker.patch.object(fake_executor, "_op_symlink", side_effect=OSError("busy"))

        result = enabled_manager.turn_on()

        assert result.kind is ErrorKind.EXECUTION_FAILURE
        assert not catalog.get(iso_item.id).is_active


class TestItems:
    """Test disk item lifecycle."""

    def test_add_iso_item(self, manager, iso_file, catalog):
        result = manager.add_item("ISO", str(iso_file), "Debian")

        assert result.ok
        item = result.value
        assert item.mode is DiskMode.ISO
        assert item.path == str(iso_file)
        assert item.disk_size_gb == 0.0
        assert catalog.list() == [item]

    def test_add_disk_item_creates_image(self, manager, tmp_path, catalog):
        """Test Disk mode creates {folder}/{name}.img of the given size."""
        folder = tmp_path / "disks"
        folder.mkdir()

        result = manager.add_item(DiskMode.DISK, str(folder), "scratch", 0.5)

        assert result.ok
        assert result.value.path == str(folder)
        assert (folder / "scratch.img").stat().st_size == 500_000_000

    @pytest.mark.parametrize(
        "mode,name,size,kind",
        [
            ("floppy", "x", 0, ErrorKind.INVALID_INPUT),
            ("iso", "", 0, ErrorKind.INVALID_INPUT),
            ("disk", "x", 0, ErrorKind.INVALID_INPUT),
        ],
    )
    def test_add_invalid(self, manager, tmp_path, catalog, mode, name, size, kind):
        result = manager.add_item(mode, str(tmp_path), name, size)

        assert result.kind is kind
        assert catalog.list() == []

    def test_add_wrong_path_type(self, manager, tmp_path, catalog):
        """Test an ISO item needs an existing file."""
        result = manager.add_item("iso", str(tmp_path), "x")

        assert result.kind is ErrorKind.NOT_FOUND
        assert catalog.list() == []

    def test_mount_item(self, enabled_manager, iso_item, catalog, read_attr, iso_file):
        result = enabled_manager.mount_item(iso_item.id)

        assert result.value == 0
        stored = catalog.get(iso_item.id)
        assert stored.is_active and stored.lun_id == 0
        assert read_attr(0, "file") == str(iso_file)
        assert read_attr(0, "inquiry_string") == "Debian"

    def test_mount_records_item_under_gadget_lock(self, enabled_manager, iso_item, catalog):
        """Test the catalog is updated while the mount still holds the gadget lock."""
        seen = []
        catalog.add_listener(lambda _items: seen.append(get_active_operation()))

        enabled_manager.mount_item(iso_item.id)
        enabled_manager.eject_item(iso_item.id)

        assert seen == ["mount_item", "eject_item"]

    def test_mount_active_item_is_noop(self, enabled_manager, iso_item):
        enabled_manager.mount_item(iso_item.id)

        assert enabled_manager.mount_item(iso_item.id).value == 0
        assert enabled_manager.luns.list_slots()[1].is_free

    def test_mount_disk_item(self, enabled_manager, tmp_path, read_attr):
        folder = tmp_path / "disks"
        folder.mkdir()
        item = enabled_manager.add_item("disk", str(folder), "scratch", 0.001).value

        assert enabled_manager.mount_item(item.id).ok
        assert read_attr(0, "file") == f"{folder}/scratch.img"
        assert read_attr(0, "ro") == "0"

    def test_mount_when_full(self, enabled_manager, iso_file, catalog):
        """Test a fourth mount on three slots fails and stays inactive."""
        items = [
            enabled_manager.add_item("iso", str(iso_file), f"d{i}").value for i in range(4)
        ]
        for item in items[:3]:
            assert enabled_manager.mount_item(item.id).ok

        result = enabled_manager.mount_item(items[3].id)

        assert result.kind is ErrorKind.RESOURCE_EXHAUSTED
        assert not catalog.get(items[3].id).is_active

    def test_mount_unknown_item(self, enabled_manager):
        assert enabled_manager.mount_item("nope").kind is ErrorKind.NOT_FOUND

    def test_eject_item(self, enabled_manager, iso_item, catalog, read_attr):
        enabled_manager.mount_item(iso_item.id)

        result = enabled_manager.eject_item(iso_item.id)

        assert result.ok
        assert not catalog.get(iso_item.id).is_active
        assert read_attr(0, "file") == ""

    def test_eject_inactive_item(self, enabled_manager, iso_item):
        assert enabled_manager.eject_item(iso_item.id).ok

    def test_toggle_item(self, enabled_manager, iso_item, catalog):
        assert enabled_manager.toggle_item(iso_item.id, True).ok
        assert catalog.get(iso_item.id).is_active

        assert enabled_manager.toggle_item(iso_item.id, False).ok
        assert not catalog.get(iso_item.id).is_active

    def test_remove_item(self, enabled_manager, iso_item, catalog):
        assert enabled_manager.remove_item(iso_item.id).ok
        assert catalog.list() == []

    def test_remove_active_item(self, enabled_manager, iso_item, catalog):
        """Test a mounted item must be ejected first."""
        enabled_manager.mount_item(iso_item.id)

        result = enabled_manager.remove_item(iso_item.id)

        assert result.kind is ErrorKind.INVALID_INPUT
        assert len(catalog.list()) == 1

    def test_remove_unknown_item(self, manager):
        assert manager.remove_item("nope").kind is ErrorKind.NOT_FOUND


class TestReconcile:
    """Test resynchronizing the catalog with the slots."""

    def test_unconfigured_gadget_deactivates_all(self, manager, catalog):
        catalog.append(DiskItem(mode=DiskMode.ISO, path="/a.iso", name="a").activated(0))

        changed = manager.reconcile()

        assert len(changed) == 1
        assert not catalog.list()[0].is_active

    def test_externally_ejected_item(self, enabled_manager, iso_item, catalog, gadget_paths):
        """Test an item whose slot was cleared behind our back is deactivated."""
        enabled_manager.mount_item(iso_item.id)
        Path(gadget_paths.lun_attribute(0, "file")).write_text("\n")

        changed = enabled_manager.reconcile()

        assert [item.id for item in changed] == [iso_item.id]
        assert not catalog.get(iso_item.id).is_active

    def test_slot_reused_by_other_file(self, enabled_manager, iso_item, catalog, gadget_paths):
        enabled_manager.mount_item(iso_item.id)
        Path(gadget_paths.lun_attribute(0, "file")).write_text("/sdcard/other.iso\n")

        enabled_manager.reconcile()

        assert not catalog.get(iso_item.id).is_active

    def test_matching_items_stay_active(self, enabled_manager, iso_item, catalog):
        enabled_manager.mount_item(iso_item.id)

        assert enabled_manager.reconcile() == []
        assert catalog.get(iso_item.id).is_active

    def test_symlinked_path_stays_active(
        self, manager, tmp_path, catalog, fake_executor, read_attr
    ):
        """Test an item on a symlinked folder survives startup and can be ejected."""
        storage = tmp_path / "storage"
        storage.mkdir()
        (storage / "live.iso").write_bytes(b"\0" * 2048)
        (tmp_path / "sdcard").symlink_to(storage)
        fake_executor.resolve_backing_files = True
        manager.turn_on()
        item = manager.add_item("iso", str(tmp_path / "sdcard" / "live.iso"), "Live").value
        assert manager.mount_item(item.id).value == 0

        manager.initialize()

        assert catalog.get(item.id).is_active
        assert manager.eject_item(item.id).ok
        assert read_attr(0, "file") == ""

    def test_disk_folder_with_trailing_slash_stays_active(
        self, enabled_manager, tmp_path, catalog
    ):
        folder = tmp_path / "disks"
        folder.mkdir()
        item = enabled_manager.add_item("disk", f"{folder}/", "scratch", 0.001).value
        enabled_manager.mount_item(item.id)

        assert enabled_manager.reconcile() == []
        assert catalog.get(item.id).is_active

    def test_initialize_reconciles(self, enabled_manager, iso_item, catalog, gadget_paths):
        """Test startup picks up the live gadget state."""
        enabled_manager.mount_item(iso_item.id)
        Path(gadget_paths.lun_attribute(0, "file")).write_text("\n")
        enabled_manager.gadget_enabled.set(False)

        enabled_manager.initialize()

        assert enabled_manager.gadget_enabled.value is True
        assert not catalog.get(iso_item.id).is_active


class TestCharging:
    """Test the charging passthrough."""

    def test_set_and_get(self, manager):
        assert manager.set_charging_state(True).ok
        assert manager.get_charging_state() is True
        assert manager.charging_suspended.value is True


class TestWorker:
    """Test the single background worker."""

    def test_submit_returns_result(self, manager):
        future = manager.submit(lambda a, b: a + b, 2, 3)

        assert future.result(timeout=5) == 5

    def test_tasks_run_in_order_on_one_thread(self, manager):
        order = []
        threads = set()

        def task(n):
            threads.add(threading.get_ident())
            order.append(n)

        futures = [manager.submit(task, n) for n in range(5)]
        for future in futures:
            future.result(timeout=5)

        assert order == [0, 1, 2, 3, 4]
        assert len(threads) == 1
        assert threading.get_ident() not in threads
