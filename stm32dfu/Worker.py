import logging
import threading
from concurrent import futures

from .DfuErrors import OperationInterruptedError

LOGGER = logging.getLogger(__name__)


class Worker:
    """One background thread running device operations in submission order.

    Progress and failures reach the caller only through the status listeners;
    the futures returned by ``submit`` carry the result or the raised error.
    """

    def __init__(self, name='stm32dfu'):
        self._executor = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending = set()
        self._listeners = []
        self._closed = False
        self.cancel_event = threading.Event()

    def add_listener(self, listener):
        if listener is None:
            raise ValueError("Listener is None")
        self._listeners.append(listener)

    def report(self, msg):
        LOGGER.info(msg)
        for listener in list(self._listeners):
            listener(msg)

    @property
    def closed(self):
        return self._closed

    def submit(self, name, fn, *args):
        with self._lock:
            if self._closed:
                raise RuntimeError("Worker is shut down, cannot run %s" % name)
            future = self._executor.submit(self._run, name, fn, args)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future):
        with self._lock:
            self._pending.discard(future)

    def _run(self, name, fn, args):
        try:
            return fn(*args)
        except OperationInterruptedError:
            self.report("%s has been interrupted, please launch the operation again" % name)
            raise
        except Exception as e:
            LOGGER.debug("%s failed", name, exc_info=True)
            self.report(str(e))
            raise

    def shutdown(self, grace_period=10.0):
        with self._lock:
            self._closed = True
            pending = list(self._pending)
        self._executor.shutdown(wait=False, cancel_futures=True)

        _, running = futures.wait(pending, timeout=grace_period)
        if running:
            LOGGER.warning("Interrupting %d running operation(s)", len(running))
            self.cancel_event.set()
            futures.wait(running, timeout=grace_period)
        self._listeners.clear()
