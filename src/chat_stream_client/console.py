import sys
import threading

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Spinner:
    """Thread-based spinner shown until the first token of a reply arrives."""

    def __init__(self, prefix: str = "", label: str = " Waiting for reply...", stream=None):
        self._prefix = prefix
        self._label = label
        self._stream = stream or sys.stdout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._frame_width = 1 + len(label)

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._thread:
            self._thread.join()
        clear = self._prefix + " " * self._frame_width
        self._stream.write("\r" + clear + "\r" + self._prefix)
        self._stream.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                self._stream.write("\r" + self._prefix + frame)
                self._stream.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            return  # terminal cannot render the frames
