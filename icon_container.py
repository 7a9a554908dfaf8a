"""
icon_container.py

ICO container layout:

  header     6 bytes   reserved (0), type (1 = icon), entry count      <HHH
  directory  16 bytes  per entry: width, height, color count, reserved,
                       planes, bits per pixel, payload length, offset  <BBBBHHII
  payloads   each variant's encoded bytes, back to back, in directory order

A width or height byte of 0 stands for 256 or more.
"""

from __future__ import annotations

import contextlib
import os
import stat
import struct
import tempfile
from dataclasses import dataclass
from typing import List, Sequence

from conversion_errors import IoError
from icon_variants import IconVariant


ICON_HEADER_FORMAT = "<HHH"
ICON_DIRECTORY_ENTRY_FORMAT = "<BBBBHHII"
ICON_HEADER_SIZE = struct.calcsize(ICON_HEADER_FORMAT)
ICON_DIRECTORY_ENTRY_SIZE = struct.calcsize(ICON_DIRECTORY_ENTRY_FORMAT)

ICON_RESOURCE_TYPE = 1
COLOR_PLANES = 1
BITS_PER_PIXEL = 32
MAX_ENTRY_COUNT = 0xFFFF
MAX_UINT32 = 0xFFFFFFFF


@dataclass(frozen=True)
class DirectoryEntry:
    width: int
    height: int
    payload_length: int
    payload_offset: int
    color_count: int = 0
    reserved: int = 0
    color_planes: int = COLOR_PLANES
    bits_per_pixel: int = BITS_PER_PIXEL

    def pack(self) -> bytes:
        return struct.pack(
            ICON_DIRECTORY_ENTRY_FORMAT,
            self.width,
            self.height,
            self.color_count,
            self.reserved,
            self.color_planes,
            self.bits_per_pixel,
            self.payload_length,
            self.payload_offset,
        )


def encode_dimension(size_pixels: int) -> int:
    return 0 if size_pixels >= 256 else size_pixels


def plan_icon_directory(variants: Sequence[IconVariant]) -> List[DirectoryEntry]:
    """Directory entries for the variants, with offsets measured from file start."""
    if not variants:
        raise ValueError("An icon container needs at least one image.")
    if len(variants) > MAX_ENTRY_COUNT:
        raise ValueError(f"An icon container holds at most {MAX_ENTRY_COUNT} images, got {len(variants)}.")

    running_offset = ICON_HEADER_SIZE + len(variants) * ICON_DIRECTORY_ENTRY_SIZE
    directory_entries: List[DirectoryEntry] = []
    for variant in variants:
        payload_length = len(variant.payload)
        if running_offset + payload_length > MAX_UINT32:
            raise ValueError("Icon payloads exceed the 4 GiB addressable by the container directory.")
        dimension_byte = encode_dimension(variant.size)
        directory_entries.append(
            DirectoryEntry(
                width=dimension_byte,
                height=dimension_byte,
                payload_length=payload_length,
                payload_offset=running_offset,
            )
        )
        running_offset += payload_length
    return directory_entries


def build_icon_container(variants: Sequence[IconVariant]) -> bytes:
    directory_entries = plan_icon_directory(variants)
    header = struct.pack(ICON_HEADER_FORMAT, 0, ICON_RESOURCE_TYPE, len(directory_entries))
    directory = b"".join(entry.pack() for entry in directory_entries)
    payloads = b"".join(variant.payload for variant in variants)
    return header + directory + payloads


def published_file_mode(output_path: str) -> int:
    """Mode of the file being replaced, or what a plain open() would create."""
    try:
        return stat.S_IMODE(os.stat(output_path).st_mode)
    except FileNotFoundError:
        current_umask = os.umask(0)
        os.umask(current_umask)
        return 0o666 & ~current_umask


def write_icon_container(variants: Sequence[IconVariant], output_path: str) -> int:
    """
    Serialize the variants and publish them at output_path in one step.

    The bytes go to a temporary file next to the destination which is renamed
    over it only after a complete, flushed write; on failure the temporary file
    is removed and nothing is left at output_path. The published file keeps the
    mode of the file it replaces, or gets the umask default. Returns the bytes
    written.
    """
    container_bytes = build_icon_container(variants)
    output_directory = os.path.dirname(os.path.abspath(output_path))
    temporary_path = None
    published = False
    try:
        file_mode = published_file_mode(output_path)
        file_descriptor, temporary_path = tempfile.mkstemp(
            prefix=".", suffix=".ico.tmp", dir=output_directory
        )
        with os.fdopen(file_descriptor, "wb") as file_pointer:
            file_pointer.write(container_bytes)
            file_pointer.flush()
            os.fchmod(file_pointer.fileno(), file_mode)
            os.fsync(file_pointer.fileno())
        os.replace(temporary_path, output_path)
        published = True
    except OSError as error:
        raise IoError(f"Could not write {output_path}: {error}") from error
    finally:
        if not published and temporary_path is not None:
            with contextlib.suppress(OSError):
                os.remove(temporary_path)
    return len(container_bytes)


def read_icon_directory(container_bytes: bytes) -> List[DirectoryEntry]:
    if len(container_bytes) < ICON_HEADER_SIZE:
        raise ValueError("Data is too short to hold an icon header.")
    reserved, resource_type, entry_count = struct.unpack_from(ICON_HEADER_FORMAT, container_bytes, 0)
    if reserved != 0 or resource_type != ICON_RESOURCE_TYPE:
        raise ValueError(f"Not an icon container (reserved={reserved}, type={resource_type}).")
    directory_end = ICON_HEADER_SIZE + entry_count * ICON_DIRECTORY_ENTRY_SIZE
    if len(container_bytes) < directory_end:
        raise ValueError(f"Icon directory of {entry_count} entries is truncated.")

    directory_entries: List[DirectoryEntry] = []
    for entry_index in range(entry_count):
        entry_offset = ICON_HEADER_SIZE + entry_index * ICON_DIRECTORY_ENTRY_SIZE
        (
            width,
            height,
            color_count,
            entry_reserved,
            color_planes,
            bits_per_pixel,
            payload_length,
            payload_offset,
        ) = struct.unpack_from(ICON_DIRECTORY_ENTRY_FORMAT, container_bytes, entry_offset)
        directory_entries.append(
            DirectoryEntry(
                width=width,
                height=height,
                payload_length=payload_length,
                payload_offset=payload_offset,
                color_count=color_count,
                reserved=entry_reserved,
                color_planes=color_planes,
                bits_per_pixel=bits_per_pixel,
            )
        )
    return directory_entries
