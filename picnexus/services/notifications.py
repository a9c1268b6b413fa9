"""
User-facing notification and clipboard sinks.

Both are fire-and-forget: failures are logged and never reach the upload
path. Desktop front ends provide their own Notifier; the CLI uses
LogNotifier.
"""

from typing import Protocol

import pyperclip

from picnexus.utils.logger import log


class Notifier(Protocol):
    def notify(self, title: str, body: str = "", level: str = "info") -> None: ...


class Clipboard(Protocol):
    def copy(self, text: str) -> None: ...


class LogNotifier:
    """Notifier that writes notifications to the log."""

    def notify(self, title: str, body: str = "", level: str = "info") -> None:
        message = f"{title}: {body}" if body else title
        log(message, level=level, category="general")


class PyperclipClipboard:
    """System clipboard via pyperclip."""

    def copy(self, text: str) -> None:
        pyperclip.copy(text)


def safe_notify(notifier: Notifier, title: str, body: str = "", level: str = "info") -> None:
    try:
        notifier.notify(title, body, level)
    except Exception as e:
        log(f"Notification failed: {e}", level="warning", category="general")


def safe_copy(clipboard: Clipboard, text: str) -> bool:
    try:
        clipboard.copy(text)
        return True
    except Exception as e:
        log(f"Failed to copy to clipboard: {e}", level="warning", category="general")
        return False
