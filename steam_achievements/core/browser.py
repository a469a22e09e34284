"""Abstract browser-cookie source used for Steam authentication.

The embedded browser's cookie store is the single source of truth for the
Steam session. The HTTP layer only ever copies cookies out of it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

__all__ = ["BrowserCookie", "BrowserView", "CookieBrowser", "LoginCompletionCheck"]


@dataclass(frozen=True)
class BrowserCookie:
    """A cookie as reported by the browser.

    Attributes:
        name: Cookie name.
        value: Raw cookie value.
        domain: Cookie domain, possibly with a leading dot.
        path: Cookie path.
        secure: Whether the cookie is HTTPS-only.
        http_only: Whether scripts are denied access.
        expires: Expiry as a Unix timestamp, None for session cookies.
    """

    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = False
    expires: float | None = None


LoginCompletionCheck = Callable[[str, list[BrowserCookie]], bool]


class BrowserView(ABC):
    """An off-screen page that can be navigated and inspected.

    Usable as a context manager that closes the view on exit.
    """

    @abstractmethod
    def navigate(self, url: str, timeout: float) -> bool:
        """Loads ``url`` and waits for the load to finish.

        Args:
            url: Address to load.
            timeout: Seconds to wait before giving up.

        Returns:
            True if the page finished loading within the timeout.
        """

    @abstractmethod
    def current_url(self) -> str:
        """Returns the URL the view ended up on after redirects."""

    @abstractmethod
    def cookies(self) -> list[BrowserCookie]:
        """Returns the cookies visible to this view's profile."""

    @abstractmethod
    def close(self) -> None:
        """Releases the view."""

    def __enter__(self) -> BrowserView:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class CookieBrowser(ABC):
    """Host-provided embedded browser sharing one persistent cookie store."""

    @abstractmethod
    def create_offscreen_view(self) -> BrowserView:
        """Creates an invisible view bound to the shared cookie store."""

    @abstractmethod
    def get_cookies(self) -> list[BrowserCookie]:
        """Returns every cookie currently in the shared store."""

    @abstractmethod
    def delete_cookies(self, domain_pattern: str) -> None:
        """Deletes cookies whose domain matches a regular expression.

        Args:
            domain_pattern: Pattern searched against the domain with any
                leading dot removed.
        """

    @abstractmethod
    def run_login_dialog(self, url: str, is_complete: LoginCompletionCheck) -> bool:
        """Shows a user-visible login page until the user signs in.

        The dialog closes itself after a page load for which
        ``is_complete(current_url, cookies)`` returns True, or when the
        user dismisses it.

        Returns:
            True if the dialog closed because login completed.
        """
