import logging
import time

from .BlockTransfer import BlockTransfer, max_block_size
from .DfuErrors import CompatibilityError, DfuError, ProtocolError, RetryExhaustedError, TransportError
from .DfuState import DfuState
from .Settings import (BLANK_CHECK_ERASED, FEATURE_REGISTER, INTERNAL_FLASH_SIZE,
                       INTERNAL_FLASH_START, OPTION_BYTES_START, Settings)

LOGGER = logging.getLogger(__name__)

ERASED_BYTE = 0xff
FAST_OPERATIONS = 0x03


def buffer_hash(data):
    """Hash of a byte buffer, as java.nio.ByteBuffer.hashCode() computes it."""
    h = 1
    for b in reversed(data):
        h = (31 * h + (b - 256 if b > 127 else b)) & 0xffffffff
    return h - 0x100000000 if h & 0x80000000 else h


def abs_int32(value):
    # abs(INT_MIN) overflows back to INT_MIN
    return value if value == -0x80000000 else abs(value)


class Programmer:
    """Synchronous DfuSe workflows over a ``DfuDevice``.

    Every operation runs to completion on the calling thread; ``report`` receives
    the human readable progress messages.
    """

    def __init__(self, dfu, identity, settings=None, report=None):
        self.dfu = dfu
        self.identity = identity
        self.settings = settings or Settings()
        self.report = report or (lambda msg: None)

    def _block_transfer(self):
        version = self.identity.bootloader_version
        return BlockTransfer(self.dfu, max_block_size(version))

    def check_compatibility(self, image):
        if image is None:
            raise DfuError("No .dfu file loaded")
        if (self.identity.vendor_id, self.identity.product_id) != (image.vendor_id, image.product_id):
            raise CompatibilityError("PID/VID mismatch: file %04x:%04x, device %04x:%04x" % (
                image.vendor_id, image.product_id, self.identity.vendor_id, self.identity.product_id))

        if self.identity.bootloader_version != image.bootloader_version:
            LOGGER.warning("Boot version mismatch: device 0x%04x, file 0x%04x",
                           self.identity.bootloader_version, image.bootloader_version)
            self.report("Warning: Device Boot Version = 0x%x, File Boot Version = 0x%x" % (
                self.identity.bootloader_version, image.bootloader_version))

        if image.element_address != INTERNAL_FLASH_START:
            raise CompatibilityError("Firmware does not start at beginning of internal flash")
        if image.element_end >= INTERNAL_FLASH_START + INTERNAL_FLASH_SIZE:
            raise CompatibilityError("Firmware image too large for target")

        block_size = max_block_size(self.identity.bootloader_version)
        LOGGER.info("Firmware OK and compatible")
        return block_size

    def is_device_protected(self):
        self.dfu.await_idle()
        self.dfu.set_address(INTERNAL_FLASH_START)
        status = self.dfu.execute()
        protected = status.state == DfuState.DFU_ERROR
        self.dfu.await_idle(status)
        return protected

    def remove_read_protection(self):
        self.dfu.read_unprotect()
        status = self.dfu.get_status()
        if status.state != DfuState.DFU_DOWNLOAD_BUSY:
            raise ProtocolError("Failed to execute unprotect command")
        # the device mass erases and resets itself
        self.dfu.release()

    def read_image(self, address, length):
        return self._block_transfer().read_image(address, length)

    def write_image(self, image):
        self._block_transfer().write_image(image)

    def is_device_blank(self, image):
        data = self.read_image(image.element_address, image.element_length)
        if self.settings.blank_check == BLANK_CHECK_ERASED:
            return data.count(ERASED_BYTE) == len(data)
        return image.element_length == abs_int32(buffer_hash(data))

    def is_written_image_ok(self, image):
        start = time.monotonic()
        data = self.read_image(image.element_address, image.element_length)
        LOGGER.info("Verify completed in %d ms", (time.monotonic() - start) * 1000)
        return data == image.payload

    def erase(self):
        start = time.monotonic()
        self.dfu.await_idle()
        self.dfu.mass_erase()
        # starts the erase; reports busy even for an invalid address or ROP
        status = self.dfu.get_status()
        self.dfu.await_idle(status, erase=True)
        return int((time.monotonic() - start) * 1000)

    def mass_erase(self, image=None):
        if image is not None:
            self.check_compatibility(image)

        if self.is_device_protected():
            self.remove_read_protection()
            self.report("Read Protection removed. Device resets...Wait until it re-enumerates")
            return False

        if image is not None and self.is_device_blank(image):
            self.report("Device is already blank, erase skipped")
            return True

        self.report("Erasing...")
        elapsed = self.erase()
        self.report("Mass erase completed in %d ms" % elapsed)
        return True

    def program_firmware(self, image):
        """Run the full erase, write, verify and option byte sequence.

        Returns False when read protection had to be removed first; the device
        then resets and the call has to be repeated once it re-enumerates.
        """
        self.check_compatibility(image)

        if self.is_device_protected():
            LOGGER.info("Device is protected, removing read protection")
            self.remove_read_protection()
            self.report("Read Protection removed. Device resets...Wait until it re-enumerates")
            return False

        retries = self.settings.max_retries
        for attempt in range(retries + 1, 0, -1):
            if self.is_device_blank(image):
                break
            if attempt == 1:
                raise RetryExhaustedError("Cannot Mass Erase, REPLACE UNIT!")
            self.report("Device not blank, erasing")
            self.erase()

        self.report("Programming...")
        self.write_image(image)

        for attempt in range(retries + 1, 0, -1):
            if self.is_written_image_ok(image):
                break
            if attempt == 1:
                raise RetryExhaustedError("Cannot Write successfully, REPLACE UNIT!")
            self.report("Verification failed, retry")
            self.erase()
            self.write_image(image)

        self.report("Writing Option Bytes, will self-reset")
        self.write_option_bytes(self.settings.option_bytes)
        return True

    def program(self, image):
        block_size = self.check_compatibility(image)
        if self.is_device_protected():
            self.report("Device is Read-Protected...First Mass Erase")
            return False

        if image.path:
            self.report("File Path: %s" % image.path)
        self.report("Element Size: %d Bytes" % image.element_length)
        self.report("Element Address: 0x%x" % image.element_address)
        self.report("Start writing file in blocks of %d Bytes" % block_size)
        self.report("Programming...")

        start = time.monotonic()
        self.write_image(image)
        self.report("Programming completed in %d ms" % ((time.monotonic() - start) * 1000))
        return True

    def verify(self, image):
        self.check_compatibility(image)
        if self.is_device_protected():
            self.report("Device is Read-Protected...First Mass Erase")
            return False

        self.report("Verifying...")
        if self.is_written_image_ok(image):
            self.report("Device firmware equals file firmware")
            return True
        self.report("Device firmware does not equal file firmware")
        return False

    def write_option_bytes(self, options):
        self.dfu.await_idle()
        self.dfu.set_address(OPTION_BYTES_START)
        status = self.dfu.execute()
        if status.state == DfuState.DFU_ERROR:
            raise ProtocolError("Option Byte Start address not supported")

        LOGGER.info("Writing options: 0x%x", options)
        self.dfu.dnload(0, [options & 0xff, (options >> 8) & 0xff])
        try:
            self.dfu.get_status()
        except TransportError as e:
            LOGGER.info("Device reset after option bytes write: %s", e)
        self.report("Option bytes written, device resets")

    def read_device_feature(self):
        self.dfu.await_idle()
        self.dfu.set_address(FEATURE_REGISTER)
        status = self.dfu.execute()
        if status.state == DfuState.DFU_ERROR:
            raise ProtocolError("Fast Operations not supported")
        self.dfu.await_idle(status)

        config = self.dfu.read(0, 4)
        status = self.dfu.get_status()
        self.dfu.await_idle(status)
        return bytearray(config)

    def fast_operations(self):
        if self.is_device_protected():
            self.report("Device is Read-Protected...First Mass Erase")
            return False

        config = self.read_device_feature()
        if config[0] == FAST_OPERATIONS:
            self.report("Fast Operations was already set (Parallelism x32)")
            return True

        config[0] = FAST_OPERATIONS
        self.report("Setting...")
        self.dfu.write(0, config)
        self.dfu.get_status()
        status = self.dfu.get_status()
        self.dfu.await_idle(status)
        self.report("Fast Operations set (Parallelism x32)")
        return True

    def detach(self, address=INTERNAL_FLASH_START):
        self.dfu.await_idle(self.dfu.get_status())
        # the bootloader jumps to the address pointer on leave
        self.dfu.set_address(address)
        self.dfu.await_idle(self.dfu.get_status())

        self.dfu.leave()
        try:
            status = self.dfu.get_status()
            if status.state != DfuState.DFU_MANIFEST:
                return False
            status = self.dfu.get_status()
            return status.state != DfuState.DFU_ERROR
        except TransportError:
            # the device has already disconnected
            return True

    def leave_dfu_mode(self):
        if self.detach():
            self.report("Successfully left DFU mode")
            return True
        self.report("Could not leave DFU mode")
        return False
