from __future__ import annotations

import pytest
from fakes import FakeBootloader, build_dfu, firmware

from stm32dfu import cli


@pytest.fixture
def device(monkeypatch: pytest.MonkeyPatch) -> FakeBootloader:
    device = FakeBootloader()
    monkeypatch.setattr(cli, "find_transport", lambda vid, pid: device)
    return device


@pytest.fixture
def dfufile(tmp_path):
    path = tmp_path / "app.dfu"
    path.write_bytes(build_dfu(firmware(3000)))
    return path


def test_program(device, dfufile, capsys) -> None:
    assert cli.main(["--program", str(dfufile), "--blank-check", "erased"]) == 0

    assert bytes(device.flash[:3000]) == firmware(3000)
    assert device.options == 0xAAE8
    assert "Option bytes written, device resets" in capsys.readouterr().out


def test_corrupt_file_never_touches_device(device, tmp_path, capsys) -> None:
    data = bytearray(build_dfu(firmware(1024)))
    data[400] ^= 0x01
    path = tmp_path / "bad.dfu"
    path.write_bytes(bytes(data))

    assert cli.main(["--flash", str(path)]) == 1
    assert "CRC Failed" in capsys.readouterr().err
    assert device.calls == []


def test_missing_file(device, tmp_path, capsys) -> None:
    assert cli.main(["--verify", str(tmp_path / "nope.dfu")]) == 1
    assert capsys.readouterr().err
    assert device.calls == []


def test_verify_mismatch(device, dfufile, capsys) -> None:
    assert cli.main(["--verify", str(dfufile)]) == 1
    assert "Device firmware does not equal file firmware" in capsys.readouterr().out


def test_flash_then_verify(device, dfufile, capsys) -> None:
    assert cli.main(["--flash", str(dfufile)]) == 0
    assert cli.main(["--verify", str(dfufile)]) == 0
    assert "Device firmware equals file firmware" in capsys.readouterr().out


def test_read(device, tmp_path, capsys) -> None:
    device.flash[:4] = b"\x01\x02\x03\x04"
    out = tmp_path / "dump.bin"

    assert cli.main(["--read", str(out), "0x10"]) == 0
    assert out.read_bytes() == b"\x01\x02\x03\x04" + b"\xff" * 12
    assert "Done, read 16 bytes" in capsys.readouterr().out


def test_erase_without_file(device) -> None:
    device.flash[:2] = b"\x00\x00"

    assert cli.main(["--erase"]) == 0
    assert device.count("erase") == 1
    assert bytes(device.flash[:2]) == b"\xff\xff"


def test_option_bytes(device) -> None:
    assert cli.main(["--option-bytes", "RDP_OFF,WDG_SW"]) == 0
    assert device.options == 0xAA20


def test_unknown_option_byte_flag(device, capsys) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--option-bytes", "RDP_2"])
    assert device.calls == []


def test_invalid_retries(device) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--erase", "--retries", "-1"])


def test_leave(device, capsys) -> None:
    assert cli.main(["--leave"]) == 0
    assert "Successfully left DFU mode" in capsys.readouterr().out
    assert device.disconnected


def test_actions_are_exclusive(device) -> None:
    with pytest.raises(SystemExit):
        cli.main(["--leave", "--erase"])
