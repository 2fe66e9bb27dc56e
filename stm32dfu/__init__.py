from .DfuState import DfuState
from .DfuDevice import DfuDevice, DfuStatus
from .DfuErrors import (CompatibilityError, DfuError, FormatError, OperationInterruptedError,
                        ProtocolError, RetryExhaustedError, TransportError,
                        UnsupportedBootloaderError)
from .DfuFile import FirmwareImage
from .BlockTransfer import BlockTransfer, max_block_size
from .Programmer import Programmer
from .Session import DfuSession
from .Settings import OptionBytes, Settings
from .UsbTransport import DeviceIdentity, UsbTransport, find_transport

__version__ = '0.2.0'
