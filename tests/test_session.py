from __future__ import annotations

import pytest
from fakes import FakeBootloader, build_dfu, firmware

from stm32dfu import DfuSession, Settings
from stm32dfu.DfuErrors import DfuError, FormatError, TransportError


class BootPins:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls: list[str] = []

    def enter_dfu_mode(self) -> bool:
        self.calls.append("dfu")
        return self.ok

    def enter_normal_mode(self) -> bool:
        self.calls.append("normal")
        return self.ok


@pytest.fixture
def session():
    device = FakeBootloader()
    messages: list[str] = []
    with DfuSession(device, Settings(blank_check="erased")) as s:
        s.add_listener(messages.append)
        yield s, device, messages


def test_program_firmware_through_worker(session) -> None:
    s, device, messages = session
    image = s.parse_and_validate(build_dfu(firmware(4000)))

    assert s.program_firmware().result(timeout=10) is True
    assert bytes(device.flash[:4000]) == image.payload
    assert "Firmware Target Name: ST..." in messages
    assert messages[-1] == "Option bytes written, device resets"


def test_parse_failure_does_not_touch_device(session) -> None:
    s, device, _ = session
    data = bytearray(build_dfu(firmware(1024)))
    data[400] ^= 0x80

    with pytest.raises(FormatError):
        s.parse_and_validate(bytes(data))
    assert s.image is None
    assert device.calls == []


def test_operations_without_file_are_reported(session) -> None:
    s, _, messages = session

    assert isinstance(s.verify().exception(timeout=5), DfuError)
    assert "No .dfu file loaded" in messages


def test_revoked_transport_fails_fast(session) -> None:
    s, device, messages = session
    s.parse_and_validate(build_dfu(firmware(1024)))
    s.set_transport(None)

    assert not s.connected
    assert isinstance(s.verify().exception(timeout=5), TransportError)
    assert "No device connected" in messages
    assert device.calls == []


def test_mass_erase_and_verify(session) -> None:
    s, device, messages = session
    device.flash[:10] = b"\x00" * 10

    assert s.mass_erase().result(timeout=10) is True
    assert device.count("erase") == 1

    s.parse_and_validate(build_dfu(firmware(1024)))
    assert s.verify().result(timeout=10) is False
    assert s.program().result(timeout=10) is True
    assert s.verify().result(timeout=10) is True
    assert messages[-1] == "Device firmware equals file firmware"


def test_read_image(session) -> None:
    s, device, _ = session
    device.flash[:3] = b"abc"

    assert s.read_image(3).result(timeout=10) == b"abc"


def test_fast_operations_and_leave(session) -> None:
    s, device, _ = session

    assert s.fast_operations().result(timeout=10) is True
    assert s.leave_dfu_mode().result(timeout=10) is True
    assert device.feature[0] == 0x03


def test_write_option_bytes(session) -> None:
    s, device, _ = session

    s.write_option_bytes(0xAAE8).result(timeout=10)
    assert device.options == 0xAAE8


def test_mode_switch_needs_boot_control(session) -> None:
    s, _, messages = session

    assert isinstance(s.enter_dfu_mode().exception(timeout=5), DfuError)
    assert "boot pin control" in messages[-1]


def test_mode_switch_with_boot_control() -> None:
    pins = BootPins()
    messages: list[str] = []
    with DfuSession(FakeBootloader(), boot_control=pins) as s:
        s.add_listener(messages.append)
        assert s.enter_dfu_mode().result(timeout=5) is True
        assert s.enter_normal_mode().result(timeout=5) is True

    assert pins.calls == ["dfu", "normal"]
    assert messages == ["Successfully entered DFU mode", "Successfully entered normal mode"]
