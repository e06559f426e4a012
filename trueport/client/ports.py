"""
Browser ports.

The client runs against these interfaces rather than a real browser:

- Window: location, history, navigation, popups, the opener link
- Opener: the parent window a popup can post messages to
- BrowserStore: script-visible cookies and local storage

The in-memory implementations record what happened so tests (and headless
use) can inspect navigations, posted messages and stored values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urljoin, urlsplit


# =============================================================================
# Interfaces
# =============================================================================


class Opener(ABC):
    """The window that opened this popup."""

    @abstractmethod
    def post_message(self, message: dict[str, Any], target_origin: str) -> None:
        """Deliver `message` to the opener if its origin is `target_origin`."""
        pass


class Window(ABC):
    """The current browsing context."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Full current URL, including query and fragment."""
        pass

    @property
    @abstractmethod
    def opener(self) -> Opener | None:
        pass

    @abstractmethod
    def replace_history(self, url: str) -> None:
        """Rewrite the current history entry without navigating."""
        pass

    @abstractmethod
    def navigate(self, url: str) -> None:
        """Hard navigation (replaces the current entry)."""
        pass

    @abstractmethod
    def open_popup(self, url: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    def path(self) -> str:
        return urlsplit(self.location).path or "/"


class BrowserStore(ABC):
    """Cookies the page script can see, plus local storage."""

    @abstractmethod
    def get_cookie(self, name: str) -> str | None:
        pass

    @abstractmethod
    def set_cookie(self, name: str, value: str, expires_days: int | None = None) -> None:
        pass

    @abstractmethod
    def delete_cookie(self, name: str) -> None:
        pass

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass


# =============================================================================
# In-Memory Implementations
# =============================================================================


class RecordingOpener(Opener):
    """Opener that keeps every message it was sent."""

    def __init__(self):
        self.messages: list[tuple[dict[str, Any], str]] = []

    def post_message(self, message: dict[str, Any], target_origin: str) -> None:
        self.messages.append((dict(message), target_origin))


class InMemoryWindow(Window):
    def __init__(self, location: str, opener: Opener | None = None):
        self._location = location
        self._opener = opener
        self.navigations: list[str] = []
        self.history: list[str] = []
        self.popups: list[str] = []
        self.closed = False

    @property
    def location(self) -> str:
        return self._location

    @property
    def opener(self) -> Opener | None:
        return self._opener

    def replace_history(self, url: str) -> None:
        self._location = urljoin(self._location, url)
        self.history.append(self._location)

    def navigate(self, url: str) -> None:
        self._location = urljoin(self._location, url)
        self.navigations.append(url)

    def open_popup(self, url: str) -> None:
        self.popups.append(url)

    def close(self) -> None:
        self.closed = True


class InMemoryBrowserStore(BrowserStore):
    def __init__(self):
        self.cookies: dict[str, tuple[str, datetime | None]] = {}
        self.local_storage: dict[str, str] = {}

    def get_cookie(self, name: str) -> str | None:
        if name not in self.cookies:
            return None
        value, expires_at = self.cookies[name]
        if expires_at and datetime.now(timezone.utc) > expires_at:
            del self.cookies[name]
            return None
        return value

    def set_cookie(self, name: str, value: str, expires_days: int | None = None) -> None:
        expires_at = None
        if expires_days:
            expires_at = datetime.now(timezone.utc) + timedelta(days=expires_days)
        self.cookies[name] = (value, expires_at)

    def delete_cookie(self, name: str) -> None:
        self.cookies.pop(name, None)

    def get_item(self, key: str) -> str | None:
        return self.local_storage.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.local_storage[key] = value

    def remove_item(self, key: str) -> None:
        self.local_storage.pop(key, None)
