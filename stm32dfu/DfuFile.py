"""DfuSe file container (UM0391), restricted to one target with one element."""

import logging
import struct
import zlib
from dataclasses import dataclass, replace
from typing import Optional

from .DfuErrors import FormatError

LOGGER = logging.getLogger(__name__)

# Layout of a single-target, single-element DfuSe file. Positive values are
# offsets from the start of the file, negative ones from its end.
SIGNATURE = (0, b'DfuSe')
VERSION = 5
TARGET_SIGNATURE = (11, b'Target')
TARGET_NAME = (22, 276)
TARGET_SIZE = 277
NUM_ELEMENTS = 281
ELEMENT_ADDRESS = 285
ELEMENT_LENGTH = 289
ELEMENT_DATA = 293

SUFFIX_LENGTH = 16
BOOT_VERSION = -16
PID = -14
VID = -12
DFU_SPEC = (-10, b'\x1a\x01')
SUFFIX_SIGNATURE = (-8, b'UFD')
SUFFIX_LENGTH_FIELD = -5
CRC = -4

MIN_ELEMENT_LENGTH = 512


@dataclass(frozen=True)
class FirmwareImage:
    target_name: str
    target_size: int
    element_address: int
    element_length: int
    payload: bytes
    vendor_id: int
    product_id: int
    bootloader_version: int
    file_crc: int
    path: Optional[str] = None

    @property
    def element_end(self):
        return self.element_address + self.element_length


def crc32(data):
    # DfuSe stores the running CRC register, i.e. without the final inversion
    return zlib.crc32(data) ^ 0xffffffff


def _u16(data, offset):
    # high byte sits one above the low byte, counted from the end of the file
    pos = len(data) + offset
    return (data[pos + 1] << 8) | data[pos]


def _u32(data, offset):
    return struct.unpack_from('<I', data, offset)[0]


def _at(data, field):
    offset, expected = field
    start = offset if offset >= 0 else len(data) + offset
    return bytes(data[start:start + len(expected)]) == expected


def parse(data):
    data = bytes(data)
    length = len(data)

    if length < ELEMENT_DATA + SUFFIX_LENGTH:
        raise FormatError("File too short (%d bytes)" % length)

    stored_crc = _u32(data, length + CRC)
    if stored_crc != crc32(data[:length + CRC]):
        raise FormatError("CRC Failed")

    if not _at(data, SIGNATURE):
        raise FormatError("File signature error")
    if data[VERSION] != 1:
        raise FormatError("DFU file version must be 1")

    if not _at(data, SUFFIX_SIGNATURE):
        raise FormatError("File suffix error")
    if data[length + SUFFIX_LENGTH_FIELD] != SUFFIX_LENGTH or not _at(data, DFU_SPEC):
        raise FormatError("File number error")

    if not _at(data, TARGET_SIGNATURE):
        raise FormatError("Target signature error")

    start, end = TARGET_NAME
    if data[start] == 0:
        raise FormatError("No Target Name Exist in File")
    name = data[start:end].split(b'\0', 1)[0].decode('latin-1')

    num_elements = _u32(data, NUM_ELEMENTS)
    if num_elements != 1:
        raise FormatError("Do not support multiple Elements inside Image (found %d)" % num_elements)

    address = _u32(data, ELEMENT_ADDRESS)
    element_length = _u32(data, ELEMENT_LENGTH)
    if element_length < MIN_ELEMENT_LENGTH:
        raise FormatError("Element Size is too small")
    if ELEMENT_DATA + element_length > length - SUFFIX_LENGTH:
        raise FormatError("Element extends past the end of the file")

    image = FirmwareImage(
        target_name=name,
        target_size=_u32(data, TARGET_SIZE),
        element_address=address,
        element_length=element_length,
        payload=data[ELEMENT_DATA:ELEMENT_DATA + element_length],
        vendor_id=_u16(data, VID),
        product_id=_u16(data, PID),
        bootloader_version=_u16(data, BOOT_VERSION),
        file_crc=stored_crc,
    )
    LOGGER.debug("Firmware target %r: %d bytes at 0x%08x", name, element_length, address)
    return image


def load(path):
    with open(path, 'rb') as f:
        data = f.read()
    if not data:
        raise FormatError("File %r could not be read" % path)
    image = parse(data)
    return replace(image, path=str(path))
