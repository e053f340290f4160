"""Fixed-interval background task on a daemon thread."""
import logging
import threading

log = logging.getLogger("facegate.scheduler")


class PeriodicTask:
    """Call *func* every *interval* seconds until stop() is called.

    Exceptions raised by *func* are logged and swallowed; the next tick runs
    as scheduled.
    """

    def __init__(self, func, interval: float, name: str = "periodic-task", run_immediately: bool = False):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._func = func
        self._interval = interval
        self._name = name
        self._run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self._name

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def run_once(self) -> None:
        try:
            self._func()
        except Exception:
            log.exception("[%s] tick failed; retrying on next interval", self._name)

    def _run(self) -> None:
        if self._run_immediately:
            self.run_once()
        while not self._stop.wait(self._interval):
            self.run_once()
