import argparse
import sys
from pathlib import Path

from isodroid.app.manager import GadgetManager
from isodroid.config import settings
from isodroid.domain.results import ErrorKind, Result
from isodroid.logging import LoggerFactory, setup_logging


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_ROOTED = 2

# Commands that only touch local files and work without root
LOCAL_COMMANDS = {"list", "max-devices"}


def build_parser():
    parser = argparse.ArgumentParser(
        prog="isodroid",
        description="Expose ISO files and disk images as USB mass-storage drives",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every privileged command")
    parser.add_argument(
        "--direct",
        action="store_true",
        help="Write configfs directly instead of through the root command",
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show gadget, LUN and charging state")
    commands.add_parser("on", help="Enable the mass-storage gadget")
    commands.add_parser("off", help="Disable the gadget and eject everything")
    commands.add_parser("list", help="List disk items")

    add = commands.add_parser("add", help="Declare an ISO file or a disk image")
    add.add_argument("--mode", choices=["iso", "disk"], default="iso")
    add.add_argument("--path", required=True, help="ISO file, or folder for a disk image")
    add.add_argument("--name", required=True, help="Display name (disk image file name)")
    add.add_argument("--size-gb", type=float, default=0.0, help="Disk image size in GB")

    remove = commands.add_parser("remove", help="Remove an ejected disk item")
    remove.add_argument("item", help="Item id or unique id prefix")

    mount = commands.add_parser("mount", help="Mount a disk item on a free LUN")
    mount.add_argument("item", help="Item id or unique id prefix")

    eject = commands.add_parser("eject", help="Eject a mounted disk item")
    eject.add_argument("item", help="Item id or unique id prefix")

    eject_lun = commands.add_parser("eject-lun", help="Clear a LUN by index")
    eject_lun.add_argument("lun", help="LUN index")

    create = commands.add_parser("create-image", help="Create a sparse disk image")
    create.add_argument("folder")
    create.add_argument("name")
    create.add_argument("size_gb", type=float)

    charging = commands.add_parser("charging", help="Show or set charging suspension")
    charging.add_argument("state", nargs="?", choices=["on", "off"])

    max_devices = commands.add_parser("max-devices", help="Show or set the LUN count")
    max_devices.add_argument("count", nargs="?", type=int)

    return parser


def resolve_item_id(manager, reference):
    """Resolve a full id or a unique id prefix; None if no single match."""
    matches = [item.id for item in manager.catalog.list() if item.id.startswith(reference)]
    if reference in matches:
        return reference
    if len(matches) == 1:
        return matches[0]
    return None


def format_items(items):
    if not items:
        return ["No disk items"]
    lines = []
    for item in items:
        lun = f"LUN {item.lun_id}" if item.is_active else "-"
        size = f" {item.disk_size_gb:g}GB" if item.disk_size_gb else ""
        lines.append(
            f"{item.id[:8]}  {item.mode.value:<4}  {lun:<6}  {item.name}{size}  {item.path or ''}"
        )
    return lines


def format_status(manager):
    lines = [
        f"Root:      {'yes' if manager.is_rooted else 'no'}",
        f"Gadget:    {'enabled' if manager.gadget_enabled.value else 'disabled'}",
        f"Charging:  {'suspended' if manager.charging_suspended.value else 'normal'}",
        f"LUN count: {settings.get_max_devices()}",
    ]
    if manager.gadget_enabled.value:
        for slot in manager.luns.list_slots():
            lines.append(f"  {slot.format_label()}")
    return lines


def run_command(manager, args):
    """Run one command; returns the Result or a list of lines to print."""
    command = args.command
    if command == "status":
        return format_status(manager)
    if command == "on":
        return manager.turn_on()
    if command == "off":
        return manager.turn_off()
    if command == "list":
        return format_items(manager.catalog.list())
    if command == "add":
        result = manager.add_item(args.mode, args.path, args.name, args.size_gb)
        if result.ok:
            return Result.success(result.value.id)
        return result
    if command in ("remove", "mount", "eject"):
        item_id = resolve_item_id(manager, args.item)
        if item_id is None:
            return Result.failure(ErrorKind.NOT_FOUND, f"No single item matches {args.item}")
        action = {
            "remove": manager.remove_item,
            "mount": manager.mount_item,
            "eject": manager.eject_item,
        }[command]
        return action(item_id)
    if command == "eject-lun":
        return manager.luns.eject(args.lun)
    if command == "create-image":
        return manager.images.create_gb(args.folder, args.name, args.size_gb)
    if command == "charging":
        if args.state is None:
            return ["suspended" if manager.get_charging_state() else "normal"]
        return manager.set_charging_state(args.state == "on")
    if command == "max-devices":
        if args.count is None:
            return [str(settings.get_max_devices())]
        return Result.success(settings.set_max_devices(args.count))
    raise ValueError(f"Unknown command: {command}")


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    manager = GadgetManager.from_settings(direct=args.direct)
    try:
        if args.command not in LOCAL_COMMANDS:
            manager.initialize()
            if not manager.is_rooted:
                print("Error: Root access is required to use this application.")
                return EXIT_NOT_ROOTED
        log.debug(f"Running command {args.command}")
        outcome = manager.submit(run_command, manager, args).result()
    finally:
        manager.shutdown()

    if isinstance(outcome, Result):
        print(outcome)
        if not outcome.ok:
            return EXIT_NOT_ROOTED if outcome.kind is ErrorKind.PRIVILEGE_DENIED else EXIT_ERROR
        return EXIT_OK
    for line in outcome:
        print(line)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
