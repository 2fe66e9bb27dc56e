import logging

from . import DfuFile
from .DfuDevice import DfuDevice
from .DfuErrors import DfuError, TransportError
from .Programmer import Programmer
from .Settings import INTERNAL_FLASH_START, Settings
from .Worker import Worker

LOGGER = logging.getLogger(__name__)


class DfuSession:
    """Asynchronous front end for programming one STM32 in DfuSe mode.

    Every device operation is queued on a single worker and returns a
    ``concurrent.futures.Future`` at once. Progress, results and errors are
    delivered as text to the listeners registered with ``add_listener``.

    ``transport`` is anything with ``ctrl_transfer``, ``identity`` and
    ``release`` (see ``UsbTransport``). It may be replaced or revoked with
    ``set_transport`` at any time. ``boot_control`` optionally provides
    ``enter_dfu_mode()`` and ``enter_normal_mode()`` for boards that can force
    the target into the bootloader out-of-band.
    """

    def __init__(self, transport=None, settings=None, boot_control=None):
        self.settings = settings or Settings()
        self.worker = Worker()
        self.dfu = DfuDevice(transport, max_polls=self.settings.max_polls,
                             cancel_event=self.worker.cancel_event)
        self.boot_control = boot_control
        self.image = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def add_listener(self, listener):
        self.worker.add_listener(listener)

    def set_transport(self, transport):
        self.dfu.set_transport(transport)

    @property
    def connected(self):
        return self.dfu.transport is not None

    def parse_and_validate(self, data):
        self.image = DfuFile.parse(data)
        self._describe(self.image)
        return self.image

    def load_file(self, path):
        self.image = DfuFile.load(path)
        self._describe(self.image)
        return self.image

    def _describe(self, image):
        self.worker.report("Firmware Target Name: %s" % image.target_name)
        self.worker.report("Element: %d bytes at 0x%08x" % (image.element_length, image.element_address))

    def _programmer(self):
        transport = self.dfu.transport
        if transport is None:
            raise TransportError("No device connected")
        return Programmer(self.dfu, transport.identity, self.settings, self.worker.report)

    def _submit(self, name, operation, *args):
        def task():
            return operation(self._programmer(), *args)
        return self.worker.submit(name, task)

    def program_firmware(self):
        return self._submit("Programming", Programmer.program_firmware, self.image)

    def mass_erase(self):
        return self._submit("Erasing process", Programmer.mass_erase, self.image)

    def verify(self):
        return self._submit("Verification", Programmer.verify, self.image)

    def program(self):
        return self._submit("Programming", Programmer.program, self.image)

    def read_image(self, length, address=INTERNAL_FLASH_START):
        return self._submit("Reading", Programmer.read_image, address, length)

    def write_option_bytes(self, options):
        return self._submit("Option bytes write", Programmer.write_option_bytes, options)

    def fast_operations(self):
        return self._submit("Fast operations", Programmer.fast_operations)

    def leave_dfu_mode(self):
        return self._submit("Leaving DFU mode", Programmer.leave_dfu_mode)

    def enter_dfu_mode(self):
        return self.worker.submit("Entering DFU mode", self._switch_mode, 'enter_dfu_mode', "DFU mode")

    def enter_normal_mode(self):
        return self.worker.submit("Entering normal mode", self._switch_mode, 'enter_normal_mode', "normal mode")

    def _switch_mode(self, method, mode):
        if self.boot_control is None:
            raise DfuError("Switching to %s needs boot pin control, none configured" % mode)
        if getattr(self.boot_control, method)():
            self.worker.report("Successfully entered %s" % mode)
            return True
        self.worker.report("Could not enter %s" % mode)
        return False

    def close(self):
        self.worker.shutdown(self.settings.shutdown_grace)
