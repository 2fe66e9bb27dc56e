import enum
from dataclasses import dataclass

from .DfuDevice import DEFAULT_MAX_POLLS
from .UsbTransport import ST_DFU_PRODUCT_ID, ST_VENDOR_ID

INTERNAL_FLASH_START = 0x08000000
INTERNAL_FLASH_SIZE = 0xfffff
OPTION_BYTES_START = 0x1fffc000
FEATURE_REGISTER = 0xffff0000

MAX_ALLOWED_RETRIES = 5

BLANK_CHECK_HASH = 'hash'
BLANK_CHECK_ERASED = 'erased'


class OptionBytes(enum.IntFlag):
    BOR_3 = 0x00
    BOR_2 = 0x04
    BOR_1 = 0x08
    BOR_OFF = 0x0c
    WDG_SW = 0x20
    nRST_STOP = 0x40
    nRST_STDBY = 0x80
    RDP_1 = 0x3300
    RDP_OFF = 0xaa00

    @classmethod
    def parse(cls, text):
        options = cls(0)
        for name in text.split(','):
            name = name.strip()
            if not name:
                continue
            try:
                options |= cls[name]
            except KeyError:
                raise ValueError("Unknown option byte flag %r" % name) from None
        return options


# production units would set RDP_1 instead of RDP_OFF
DEFAULT_OPTION_BYTES = (OptionBytes.RDP_OFF | OptionBytes.WDG_SW | OptionBytes.nRST_STOP |
                        OptionBytes.nRST_STDBY | OptionBytes.BOR_1)


@dataclass(frozen=True)
class Settings:
    vendor_id: int = ST_VENDOR_ID
    product_id: int = ST_DFU_PRODUCT_ID
    max_retries: int = MAX_ALLOWED_RETRIES
    max_polls: int = DEFAULT_MAX_POLLS
    blank_check: str = BLANK_CHECK_HASH
    shutdown_grace: float = 10.0
    option_bytes: int = DEFAULT_OPTION_BYTES

    def __post_init__(self):
        if self.blank_check not in (BLANK_CHECK_HASH, BLANK_CHECK_ERASED):
            raise ValueError("blank_check must be %r or %r" % (BLANK_CHECK_HASH, BLANK_CHECK_ERASED))
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.max_polls < 1:
            raise ValueError("max_polls must be at least 1")
