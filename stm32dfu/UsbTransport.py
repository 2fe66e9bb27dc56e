import logging
import re
from collections import namedtuple

import usb.core
import usb.util

from .DfuErrors import TransportError

LOGGER = logging.getLogger(__name__)

ST_VENDOR_ID = 0x0483
ST_DFU_PRODUCT_ID = 0xdf11

DeviceIdentity = namedtuple('DeviceIdentity', ['vendor_id', 'product_id', 'bootloader_version'])


class UsbTransport:
    def __init__(self, device, interface=0, alternate=0):
        self.dev = device
        self.cfg = self.dev[0]
        self.intf = None
        self.cfg.set()

        for intf in self.cfg:
            if intf.bInterfaceNumber == interface and intf.bAlternateSetting == alternate:
                self.intf = intf
        if self.intf is None:
            raise TransportError("Interface %d alt %d not found" % (interface, alternate))
        self.intf.set_altsetting()
        usb.util.claim_interface(self.dev, self.intf.bInterfaceNumber)

    @property
    def identity(self):
        return DeviceIdentity(self.dev.idVendor, self.dev.idProduct, self.dev.bcdDevice)

    @property
    def connected(self):
        return self.dev is not None

    def ctrl_transfer(self, request_type, request, value, index, data_or_length, timeout):
        if self.dev is None:
            raise TransportError("No device connected")
        try:
            result = self.dev.ctrl_transfer(request_type, request, value, index, data_or_length, timeout)
        except usb.core.USBError as e:
            raise TransportError("USB control transfer failed (request %d): %s" % (request, e)) from e
        if isinstance(result, int):
            return result
        return bytes(result)

    def release(self):
        if self.dev is None:
            return
        try:
            usb.util.release_interface(self.dev, self.intf.bInterfaceNumber)
        except usb.core.USBError as e:
            # the device may already be gone, which is why we are releasing it
            LOGGER.debug("Releasing interface failed: %s", e)
        usb.util.dispose_resources(self.dev)
        self.dev = None
        LOGGER.info("USB was released")

    def alternates(self):
        return [(self.get_string(intf.iInterface), intf) for intf in self.cfg]

    def get_string(self, index):
        return usb.util.get_string(self.dev, index)

    def get_mem_layout(self):
        mem_layout_str = self.get_string(self.intf.iInterface)
        if mem_layout_str is None:
            return None
        return parse_mem_layout(mem_layout_str)


# refer to UM0290 page 31 for how to interpret the string
_MEM_LAYOUT_RE = re.compile(r"^@(.*?)\s*/((?:0x)?[0-9a-fA-F]+)/(.*)$")
_SEGMENT_RE = re.compile(r"^(\d+)\*(\d+)(.)(.)$")


def parse_mem_layout(mem_layout_str):
    match = _MEM_LAYOUT_RE.match(mem_layout_str.strip())
    if match is None:
        return None

    name, address, segments = match.groups()
    address = int(address, 0)
    pages = []
    for segment in segments.split(','):
        seg = _SEGMENT_RE.match(segment.strip())
        if seg is None:
            return None
        npages, pagesz, prefix, kind = seg.groups()
        pagesz = int(pagesz, 10)
        pagesz = (pagesz * 1024 if prefix.lower() == 'k' else
                  pagesz * 1024 * 1024 if prefix.lower() == 'm' else pagesz)
        pages.append({'address': address,
                      'pageno': int(npages, 10),
                      'pagesize': pagesz,
                      'readable': kind in ['a', 'c', 'g'],
                      'writable': kind in ['d', 'e', 'f', 'g'],
                      'erasable': kind in ['b', 'c', 'f', 'g']})
        address += int(npages, 10) * pagesz

    return {'name': name,
            'address': pages[0]['address'],
            'size': address - pages[0]['address'],
            'segments': pages}


def find_transport(vid=ST_VENDOR_ID, pid=ST_DFU_PRODUCT_ID):
    usbdev = usb.core.find(idVendor=vid, idProduct=pid)
    if usbdev is None:
        raise TransportError("No DfuSe device found at %04x:%04x" % (vid, pid))
    return UsbTransport(usbdev)
