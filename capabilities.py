"""
Narrow interfaces to the outside world.

Managers and flows receive these instead of touching the terminal, the
filesystem or a camera themselves, so they can be driven in tests.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional, Protocol

import click
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

LEVELS = ('success', 'info', 'warning', 'error')


class Notifier(Protocol):
    def notify(self, level: str, message: str) -> None: ...


class Confirmer(Protocol):
    def confirm(self, message: str) -> bool: ...


class FileDownloader(Protocol):
    def save(self, filename: str, content: bytes) -> str: ...


class Printer(Protocol):
    def print_document(self, title: str, html: str) -> str: ...


class CameraScanner(Protocol):
    def scan(self) -> Iterator[str]: ...


# Notifications
class LoggingNotifier:
    _log_levels = {'success': logging.INFO, 'info': logging.INFO, 'warning': logging.WARNING, 'error': logging.ERROR}

    def __init__(self, name='notifications'):
        self.logger = logging.getLogger(name)

    def notify(self, level, message):
        self.logger.log(self._log_levels.get(level, logging.INFO), message)


@dataclass
class Toast:
    level: str
    message: str
    created_at: datetime = field(default_factory=datetime.now)


class ToastQueue:
    """Collects transient notifications until a caller drains them"""

    def __init__(self):
        self.toasts: List[Toast] = []

    def notify(self, level, message):
        if level not in LEVELS:
            raise ValueError(f'Unknown notification level: {level}')
        self.toasts.append(Toast(level, message))

    def messages(self, level=None):
        return [toast.message for toast in self.toasts if level is None or toast.level == level]

    @property
    def last(self) -> Optional[Toast]:
        return self.toasts[-1] if self.toasts else None

    def drain(self):
        toasts, self.toasts = self.toasts, []
        return toasts


# Confirmation
class AlwaysConfirm:
    def __init__(self, answer=True):
        self.answer = answer
        self.asked: List[str] = []

    def confirm(self, message):
        self.asked.append(message)
        return self.answer


class CallbackConfirmer:
    def __init__(self, callback: Callable[[str], bool]):
        self.callback = callback

    def confirm(self, message):
        return bool(self.callback(message))


class PromptConfirmer:
    """Blocking yes/no question on the terminal"""

    def confirm(self, message):
        return click.confirm(message, default=False)


# Output devices
class DirectoryDownloader:
    def __init__(self, directory):
        self.directory = directory

    def save(self, filename, content):
        os.makedirs(self.directory, exist_ok=True)
        path = os.path.join(self.directory, secure_filename(filename) or 'download')
        with open(path, 'wb') as fh:
            fh.write(content)
        logger.info("Saved %s (%s bytes)", path, len(content))
        return path


class HtmlFilePrinter:
    """Writes printable HTML documents where a browser or print spooler can pick them up"""

    def __init__(self, directory):
        self.directory = directory

    def print_document(self, title, html):
        os.makedirs(self.directory, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d%H%M%S')
        path = os.path.join(self.directory, f"{secure_filename(title) or 'document'}_{stamp}.html")
        with open(path, 'w', encoding='utf-8') as fh:
            fh.write(html)
        logger.info("Printed %s to %s", title, path)
        return path


class IterableScanner:
    """Replays decoded QR payloads, e.g. from a USB scanner feed or a test"""

    def __init__(self, codes: Iterable[str]):
        self.codes = codes

    def scan(self):
        for code in self.codes:
            code = (code or '').strip()
            if code:
                yield code
