"""List, upload and play audio files on a Skelly animatronic.

Usage:
    uv run python examples/skelly_files.py scan --duration 10
    uv run python examples/skelly_files.py list AA:BB:CC:DD:EE:FF
    uv run python examples/skelly_files.py upload AA:BB:CC:DD:EE:FF boo.mp3 --play
    uv run python examples/skelly_files.py play AA:BB:CC:DD:EE:FF boo.mp3
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime
from pathlib import Path

from bleak import BleakScanner

from skelly import SERVICE_UUID, SkellyDevice, TransferError, TransferResult


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _print_progress(done: int, total: int) -> None:
    print(f"\r[{_timestamp()}] chunk {done}/{total} ({done * 100 // total}%)", end="", flush=True)


def _print_result(result: TransferResult) -> None:
    print(
        f"\nUploaded {result.filename}: {result.bytes_total} bytes in {result.elapsed:.1f}s "
        f"({result.throughput:.1f} KB/s), retransmits={result.retransmits}, "
        f"resumed_at={result.start_index}"
    )


async def scan(duration: float) -> None:
    """Print devices advertising the Skelly service."""
    print(f"Scanning {duration:.1f}s for service {SERVICE_UUID}...")
    found = await BleakScanner.discover(timeout=duration, service_uuids=[SERVICE_UUID])
    for device in found:
        print(f"  {device.address}  {device.name or 'Unknown'}")
    print(f"devices_seen={len(found)}")


async def list_files(address: str) -> None:
    async with SkellyDevice(address) as device:
        await device.wait_for_files(timeout=10.0)
        for entry in device.files:
            print(
                f"  serial={entry.serial:<4} cluster={entry.cluster:<8} "
                f"eye={entry.eye_icon:<3} name={entry.name}"
            )
        capacity = device.status.capacity_kb
        print(f"files={len(device.files)} capacity_kb={capacity if capacity is not None else '?'}")


async def upload(address: str, path: Path, name: str | None, play: bool) -> None:
    data = path.read_bytes()
    filename = name or path.name
    async with SkellyDevice(address) as device:
        await device.wait_for_files(timeout=10.0)
        try:
            result = await device.upload_file(data, filename, progress_callback=_print_progress)
        except TransferError as err:
            print(f"\nUpload failed: {err}")
            return
        _print_result(result)
        if play:
            await device.play_file_by_name(filename)


async def play(address: str, name: str) -> None:
    async with SkellyDevice(address) as device:
        entry = await device.play_file_by_name(name)
        if entry is None:
            print(f"{name!r} not found")
        else:
            print(f"Playing serial={entry.serial} name={entry.name}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage audio files on a Skelly animatronic.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log protocol traffic.")
    sub = parser.add_subparsers(dest="command", required=True)

    scan_parser = sub.add_parser("scan", help="Find nearby devices.")
    scan_parser.add_argument("--duration", type=float, default=10.0, help="Scan time in seconds. Default: 10")

    list_parser = sub.add_parser("list", help="List stored files.")
    list_parser.add_argument("address")

    upload_parser = sub.add_parser("upload", help="Upload an audio file.")
    upload_parser.add_argument("address")
    upload_parser.add_argument("path", type=Path)
    upload_parser.add_argument("--name", help="Name on the device (default: file name).")
    upload_parser.add_argument("--play", action="store_true", help="Play the file once uploaded.")

    play_parser = sub.add_parser("play", help="Play a stored file by name.")
    play_parser.add_argument("address")
    play_parser.add_argument("name")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.command == "scan":
        coro = scan(args.duration)
    elif args.command == "list":
        coro = list_files(args.address)
    elif args.command == "upload":
        coro = upload(args.address, args.path, args.name, args.play)
    else:
        coro = play(args.address, args.name)
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
