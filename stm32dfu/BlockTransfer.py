import logging

from .DfuErrors import ProtocolError, UnsupportedBootloaderError
from .DfuState import DfuState

LOGGER = logging.getLogger(__name__)

# bcdDevice of the ST system bootloader -> DNLOAD/UPLOAD transfer size
BLOCK_SIZES = {
    0x011a: 1024,
    0x0200: 1024,
    0x2100: 2048,
    0x2200: 2048,
}

PAD_BYTE = 0xff


def max_block_size(bootloader_version):
    try:
        return BLOCK_SIZES[bootloader_version]
    except KeyError:
        raise UnsupportedBootloaderError(
            "Error: Unsupported bootloader version 0x%04x" % bootloader_version) from None


def split_blocks(payload, block_size):
    blocks = [payload[i:i + block_size] for i in range(0, len(payload), block_size)]
    if blocks and len(blocks[-1]) < block_size:
        # pad with 0xFF so the CRC matches what the ST bootloader computes
        blocks[-1] = blocks[-1] + bytes([PAD_BYTE]) * (block_size - len(blocks[-1]))
    return blocks


class BlockTransfer:
    def __init__(self, dfu, block_size):
        self.dfu = dfu
        self.block_size = block_size

    def point_to(self, address):
        self.dfu.set_address(address)
        status = self.dfu.execute()
        if status.state == DfuState.DFU_ERROR:
            raise ProtocolError("Start address 0x%08x not supported" % address)
        return status

    def write_block(self, address, blocknum, block):
        self.dfu.await_idle()

        if blocknum == 0:
            self.point_to(address)
            self.dfu.await_idle()

        self.dfu.write(blocknum, block)
        status = self.dfu.get_status()
        if status.state != DfuState.DFU_DOWNLOAD_BUSY:
            raise ProtocolError("Error when downloading block %d, was not busy" % blocknum)
        status = self.dfu.get_status()
        if status.state == DfuState.DFU_ERROR:
            raise ProtocolError("Error when downloading block %d, did not perform action" % blocknum)

        self.dfu.await_idle(status)

    def write_image(self, image):
        blocks = split_blocks(image.payload, self.block_size)
        LOGGER.info("Writing %d bytes at 0x%08x in %d blocks of %d bytes", image.element_length,
                    image.element_address, len(blocks), self.block_size)
        for blocknum, block in enumerate(blocks):
            self.dfu.check_cancelled()
            LOGGER.debug("Flashing block %d (%d bytes)", blocknum, len(block))
            self.write_block(image.element_address, blocknum, block)

    def read_image(self, address, length):
        self.dfu.await_idle()
        status = self.point_to(address)

        data = bytearray()
        # the last block is always requested at full size and truncated
        nblocks = (length + self.block_size - 1) // self.block_size
        for blocknum in range(nblocks):
            self.dfu.check_cancelled()
            status = self.dfu.await_idle(status)
            block = self.dfu.read(blocknum, self.block_size)
            status = self.dfu.get_status()
            data.extend(block[:length - len(data)])
            LOGGER.debug("Read block %d (%d bytes)", blocknum, len(block))

        if len(data) != length:
            raise ProtocolError("Short read: got %d of %d bytes" % (len(data), length))
        return bytes(data)
