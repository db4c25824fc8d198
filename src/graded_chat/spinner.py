import sys
import threading

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Thread-based activity indicator drawn on the current line with ``\\r``.

    The label can be changed while it runs; ``show(None)`` hides it.
    """

    def __init__(self, prefix: str = "", stream=None):
        self._prefix = prefix
        self._stream = stream or sys.stdout
        self._label = ""
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._drawn_width = 0

    @property
    def running(self) -> bool:
        return self._thread is not None

    def show(self, label: str | None) -> None:
        if label is None:
            self.stop()
            return
        with self._lock:
            self._label = f" {label}..."
        if self._thread is None:
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self._stream.write("\r" + " " * (len(self._prefix) + self._drawn_width) + "\r" + self._prefix)
        self._stream.flush()
        self._drawn_width = 0

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                with self._lock:
                    frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                padding = " " * max(0, self._drawn_width - len(frame))
                self._drawn_width = max(self._drawn_width, len(frame))
                self._stream.write("\r" + self._prefix + frame + padding)
                self._stream.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            return
