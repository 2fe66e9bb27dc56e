"""Errors raised by the stm32dfu engine."""


class DfuError(Exception):
    """Base error for stm32dfu."""


class FormatError(DfuError):
    """Raised when a DfuSe file fails structural or CRC validation."""


class CompatibilityError(DfuError):
    """Raised when an image does not fit the connected device."""


class UnsupportedBootloaderError(CompatibilityError):
    """Raised for a bootloader version with no known transfer size."""


class TransportError(DfuError):
    """Raised when a control transfer fails or no device is connected."""


class ProtocolError(DfuError):
    """Raised when the device reports an unexpected state."""


class RetryExhaustedError(DfuError):
    """Raised when an erase or write-verify loop runs out of attempts."""


class OperationInterruptedError(DfuError):
    """Raised when an operation is cancelled while in flight."""
