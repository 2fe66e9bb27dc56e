import logging
import threading
import time
from collections import namedtuple

from .DfuErrors import OperationInterruptedError, ProtocolError, TransportError
from .DfuState import DfuState

LOGGER = logging.getLogger(__name__)

DFU_REQUEST_SEND = 0x21
DFU_REQUEST_RECEIVE = 0xa1

DFU_DETACH    = 0x00
DFU_DNLOAD    = 0x01
DFU_UPLOAD    = 0x02
DFU_GETSTATUS = 0x03
DFU_CLRSTATUS = 0x04
DFU_GETSTATE  = 0x05
DFU_ABORT     = 0x06

# DfuSe commands, sent as DNLOAD block 0
CMD_SET_ADDRESS = 0x21
CMD_ERASE = 0x41
CMD_READ_UNPROTECT = 0x92

# milliseconds, 0 blocks until the transfer completes
STATUS_TIMEOUT = 500
COMMAND_TIMEOUT = 50
UPLOAD_TIMEOUT = 100
BLOCK_TIMEOUT = 0

DEFAULT_MAX_POLLS = 10000

DfuStatus = namedtuple('DfuStatus', ['status', 'state', 'poll_timeout', 'string_index'])


# Order is LSB first
def address_to_4bytes(a):
    return [a % 256, (a >> 8) % 256, (a >> 16) % 256, (a >> 24) % 256]


class DfuDevice:
    def __init__(self, transport=None, max_polls=DEFAULT_MAX_POLLS, cancel_event=None):
        self._transport = transport
        self._lock = threading.RLock()
        self.max_polls = max_polls
        self.cancel_event = cancel_event or threading.Event()
        self.last_status = None

    @property
    def transport(self):
        with self._lock:
            return self._transport

    def set_transport(self, transport):
        with self._lock:
            self._transport = transport
            self.last_status = None

    def release(self):
        with self._lock:
            transport, self._transport = self._transport, None
        if transport is not None:
            transport.release()

    def control_msg(self, request_type, request, value, buffer, timeout, what):
        with self._lock:
            if self._transport is None:
                raise TransportError("No device connected")
            result = self._transport.ctrl_transfer(request_type, request, value, 0, buffer, timeout)
        if isinstance(result, int) and result < 0:
            raise TransportError("USB failed during %s" % what)
        return result

    def dnload(self, block_num, data, timeout=COMMAND_TIMEOUT, what='command download'):
        return self.control_msg(DFU_REQUEST_SEND, DFU_DNLOAD, block_num, bytes(data), timeout, what)

    def upload(self, block_num, size):
        data = self.control_msg(DFU_REQUEST_RECEIVE, DFU_UPLOAD, block_num, size, UPLOAD_TIMEOUT, 'upload')
        return bytes(data)

    def get_status(self):
        status = self.control_msg(DFU_REQUEST_RECEIVE, DFU_GETSTATUS, 0, 6, STATUS_TIMEOUT, 'get status')
        if len(status) < 6:
            raise TransportError("Short GETSTATUS response (%d bytes)" % len(status))
        self.last_status = DfuStatus(status[0], status[4],
                                     status[1] + (status[2] << 8) + (status[3] << 16), status[5])
        LOGGER.debug("status %d, state %s, poll %d ms", self.last_status.status,
                     DfuState.string(self.last_status.state), self.last_status.poll_timeout)
        return self.last_status

    def clear_status(self):
        self.control_msg(DFU_REQUEST_SEND, DFU_CLRSTATUS, 0, None, 0, 'clear status')

    def get_state(self):
        return self.control_msg(DFU_REQUEST_RECEIVE, DFU_GETSTATE, 0, 1, STATUS_TIMEOUT, 'get state')[0]

    def abort(self):
        self.control_msg(DFU_REQUEST_SEND, DFU_ABORT, 0, None, 0, 'abort')

    def set_address(self, ap):
        return self.dnload(0x0, [CMD_SET_ADDRESS] + address_to_4bytes(ap))

    def mass_erase(self):
        return self.dnload(0x0, [CMD_ERASE])

    def read_unprotect(self):
        return self.dnload(0x0, [CMD_READ_UNPROTECT])

    def write(self, block, data):
        return self.dnload(block + 2, data, BLOCK_TIMEOUT, 'firmware download')

    def read(self, block, size):
        return self.upload(block + 2, size)

    def leave(self):
        # a zero-length DNLOAD makes the bootloader jump to the address pointer
        return self.dnload(0x0, b'', 0, 'detach')

    def execute(self, expect_busy=False):
        """Issue the GETSTATUS that triggers the last command and the one that checks it."""
        status = self.get_status()
        if expect_busy and status.state != DfuState.DFU_DOWNLOAD_BUSY:
            raise ProtocolError("Command was not executed, state %s" % DfuState.string(status.state))
        return self.get_status()

    def check_cancelled(self):
        if self.cancel_event.is_set():
            raise OperationInterruptedError("Operation interrupted")

    def await_idle(self, status=None, erase=False):
        """Clear and poll the device until it reports dfuIDLE.

        With ``status`` given the wait returns at once if that status is already
        idle, otherwise at least one CLRSTATUS/GETSTATUS round is made. Erase
        waits always make a round and sleep for the device's poll timeout
        before each one.
        """
        if not erase and status is not None and status.state == DfuState.DFU_IDLE:
            return status

        for _ in range(self.max_polls):
            self.check_cancelled()
            if erase and status is not None and status.poll_timeout:
                time.sleep(status.poll_timeout / 1000)
            self.clear_status()
            status = self.get_status()
            if status.state == DfuState.DFU_IDLE:
                return status

        raise ProtocolError("Device did not return to %s after %d polls (state %s)" % (
            DfuState.string(DfuState.DFU_IDLE), self.max_polls, DfuState.string(status.state)))
