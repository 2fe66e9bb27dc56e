from __future__ import annotations

import array

import pytest
import usb.core

from stm32dfu.DfuErrors import TransportError
from stm32dfu.UsbTransport import UsbTransport, find_transport, parse_mem_layout


class FakeUsbDevice:
    idVendor = 0x0483
    idProduct = 0xDF11
    bcdDevice = 0x2200

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error

    def ctrl_transfer(self, *args):
        if self.error is not None:
            raise self.error
        return self.result


def _transport(dev: FakeUsbDevice) -> UsbTransport:
    transport = UsbTransport.__new__(UsbTransport)
    transport.dev = dev
    transport.intf = None
    return transport


def test_identity_from_descriptor() -> None:
    identity = _transport(FakeUsbDevice()).identity
    assert identity == (0x0483, 0xDF11, 0x2200)
    assert identity.bootloader_version == 0x2200


def test_usb_error_becomes_transport_error() -> None:
    transport = _transport(FakeUsbDevice(error=usb.core.USBError("Pipe error")))
    with pytest.raises(TransportError, match="Pipe error"):
        transport.ctrl_transfer(0xA1, 3, 0, 0, 6, 500)


def test_in_transfer_returns_bytes() -> None:
    transport = _transport(FakeUsbDevice(result=array.array("B", [0, 1, 0, 0, 2, 0])))
    assert transport.ctrl_transfer(0xA1, 3, 0, 0, 6, 500) == b"\x00\x01\x00\x00\x02\x00"


def test_closed_transport_fails_fast() -> None:
    transport = _transport(FakeUsbDevice())
    transport.dev = None

    assert not transport.connected
    with pytest.raises(TransportError, match="No device connected"):
        transport.ctrl_transfer(0x21, 4, 0, 0, None, 0)
    transport.release()


def test_find_transport_without_device(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(usb.core, "find", lambda **kwargs: None)
    with pytest.raises(TransportError, match="0483:df11"):
        find_transport()


def test_parse_internal_flash_layout() -> None:
    mem = parse_mem_layout("@Internal Flash  /0x08000000/04*016Kg,01*064Kg,07*128Kg")

    assert mem["name"] == "Internal Flash"
    assert mem["address"] == 0x08000000
    assert mem["size"] == 1024 * 1024
    assert [(s["address"], s["pageno"], s["pagesize"]) for s in mem["segments"]] == [
        (0x08000000, 4, 16384),
        (0x08010000, 1, 65536),
        (0x08020000, 7, 131072),
    ]
    assert all(s["readable"] and s["writable"] and s["erasable"] for s in mem["segments"])


def test_parse_read_only_layout() -> None:
    mem = parse_mem_layout("@Option Bytes  /0x1FFFC000/01*016Be")
    assert mem["segments"][0]["writable"]
    assert not mem["segments"][0]["readable"]


def test_parse_garbage_layout() -> None:
    assert parse_mem_layout("not a layout") is None
