"""QtWebEngine-backed browser for Steam authentication.

One persistent ``QWebEngineProfile`` holds the Steam login. Its cookie
store is mirrored in memory from the store's change signals so cookie
reads never need a round trip. Every call that touches Qt objects runs
on the GUI thread; calls from worker threads are queued there and wait
for the result.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path
from typing import Any, TypeVar

from PyQt6.QtCore import QEventLoop, QObject, Qt, QThread, QTimer, QUrl, pyqtSignal
from PyQt6.QtNetwork import QNetworkCookie
from PyQt6.QtWebEngineCore import QWebEnginePage, QWebEngineProfile
from PyQt6.QtWebEngineWidgets import QWebEngineView
from PyQt6.QtWidgets import QDialog, QVBoxLayout

from steam_achievements.core.browser import BrowserCookie, BrowserView, CookieBrowser, LoginCompletionCheck
from steam_achievements.utils.i18n import t

logger = logging.getLogger("steamach.qt_browser")

__all__ = ["QtBrowserView", "QtCookieBrowser", "SteamLoginBrowserDialog", "to_browser_cookie"]

T = TypeVar("T")

_PROFILE_NAME = "steam-achievements"


def _decode(data: Any) -> str:
    return bytes(data.data()).decode("utf-8", errors="replace")


def to_browser_cookie(cookie: QNetworkCookie) -> BrowserCookie:
    """Converts a Qt cookie to the toolkit-neutral form."""
    expires = None
    if not cookie.isSessionCookie():
        expires = float(cookie.expirationDate().toSecsSinceEpoch())
    return BrowserCookie(
        name=_decode(cookie.name()),
        value=_decode(cookie.value()),
        domain=cookie.domain(),
        path=cookie.path() or "/",
        secure=cookie.isSecure(),
        http_only=cookie.isHttpOnly(),
        expires=expires,
    )


class _GuiInvoker(QObject):
    """Runs callables on the thread that owns this object."""

    _job = pyqtSignal(object)

    def __init__(self) -> None:
        super().__init__()
        self._job.connect(self._run_job, Qt.ConnectionType.QueuedConnection)

    @staticmethod
    def _run_job(job: Callable[[], None]) -> None:
        job()

    def call(self, fn: Callable[..., T], *args: Any) -> T:
        """Calls ``fn`` on the GUI thread and returns its result.

        Raises:
            Exception: Whatever ``fn`` raised.
        """
        if QThread.currentThread() == self.thread():
            return fn(*args)

        future: Future = Future()

        def job() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as exc:
                future.set_exception(exc)

        self._job.emit(job)
        return future.result()


class QtBrowserView(BrowserView):
    """An invisible page on the shared profile."""

    def __init__(self, browser: QtCookieBrowser) -> None:
        self._browser = browser
        self._page: QWebEnginePage | None = browser.invoke(lambda: QWebEnginePage(browser.profile))

    def navigate(self, url: str, timeout: float) -> bool:
        return self._browser.invoke(self._navigate_on_gui, url, timeout)

    def _navigate_on_gui(self, url: str, timeout: float) -> bool:
        if self._page is None:
            return False

        loop = QEventLoop()
        outcome = {"ok": False}

        def on_finished(ok: bool) -> None:
            outcome["ok"] = ok
            loop.quit()

        timer = QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)

        self._page.loadFinished.connect(on_finished)
        timer.start(max(1, int(timeout * 1000)))
        self._page.load(QUrl(url))
        loop.exec()
        timer.stop()
        self._page.loadFinished.disconnect(on_finished)

        if not outcome["ok"]:
            logger.debug("Navigation to %s did not finish within %.0fs", url, timeout)
        return outcome["ok"]

    def current_url(self) -> str:
        if self._page is None:
            return ""
        return self._browser.invoke(lambda: self._page.url().toString())

    def cookies(self) -> list[BrowserCookie]:
        return self._browser.get_cookies()

    def close(self) -> None:
        page, self._page = self._page, None
        if page is not None:
            self._browser.invoke(page.deleteLater)


class SteamLoginBrowserDialog(QDialog):
    """Visible Steam login page that closes itself once login completes.

    Args:
        browser: Owner of the shared profile and cookie mirror.
        url: Login page to open.
        is_complete: Decides from (current_url, cookies) whether login is done.
        parent: Parent widget.
    """

    def __init__(
        self,
        browser: QtCookieBrowser,
        url: str,
        is_complete: LoginCompletionCheck,
        parent: Any = None,
    ) -> None:
        super().__init__(parent)
        self._browser = browser
        self._is_complete = is_complete
        self.completed = False

        self.setWindowTitle(t("auth.dialog_title"))
        self.setMinimumSize(800, 600)
        self.resize(900, 700)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        self.view = QWebEngineView(self)
        self.view.setPage(QWebEnginePage(browser.profile, self.view))
        layout.addWidget(self.view)

        self.view.loadFinished.connect(self._check_completion)
        # Cookies are committed after the load event, so re-check when they land.
        browser.profile.cookieStore().cookieAdded.connect(self._check_completion)
        self.view.load(QUrl(url))

    def _check_completion(self, *_args: Any) -> None:
        if self.completed:
            return
        current = self.view.url().toString()
        if self._is_complete(current, self._browser.get_cookies()):
            logger.info("Steam login detected at %s", current)
            self.completed = True
            self.accept()

    def done(self, result: int) -> None:
        try:
            self._browser.profile.cookieStore().cookieAdded.disconnect(self._check_completion)
        except TypeError:
            pass
        super().done(result)


class QtCookieBrowser(CookieBrowser):
    """Embedded Chromium with a persistent profile under ``storage_dir``.

    Must be constructed on the GUI thread.
    """

    def __init__(self, storage_dir: Path, parent_widget: Any = None) -> None:
        self._invoker = _GuiInvoker()
        self._parent_widget = parent_widget
        self._cookies: dict[tuple[str, str, str], QNetworkCookie] = {}

        storage_dir.mkdir(parents=True, exist_ok=True)
        self.profile = QWebEngineProfile(_PROFILE_NAME)
        self.profile.setPersistentStoragePath(str(storage_dir))
        self.profile.setPersistentCookiesPolicy(QWebEngineProfile.PersistentCookiesPolicy.ForcePersistentCookies)

        store = self.profile.cookieStore()
        store.cookieAdded.connect(self._on_cookie_added)
        store.cookieRemoved.connect(self._on_cookie_removed)
        store.loadAllCookies()

    @staticmethod
    def _key(cookie: QNetworkCookie) -> tuple[str, str, str]:
        return _decode(cookie.name()), cookie.domain(), cookie.path() or "/"

    def _on_cookie_added(self, cookie: QNetworkCookie) -> None:
        self._cookies[self._key(cookie)] = QNetworkCookie(cookie)

    def _on_cookie_removed(self, cookie: QNetworkCookie) -> None:
        self._cookies.pop(self._key(cookie), None)

    def invoke(self, fn: Callable[..., T], *args: Any) -> T:
        """Runs ``fn`` on the GUI thread."""
        return self._invoker.call(fn, *args)

    def create_offscreen_view(self) -> BrowserView:
        return QtBrowserView(self)

    def get_cookies(self) -> list[BrowserCookie]:
        return self.invoke(lambda: [to_browser_cookie(c) for c in self._cookies.values()])

    def delete_cookies(self, domain_pattern: str) -> None:
        self.invoke(self._delete_on_gui, domain_pattern)

    def _delete_on_gui(self, domain_pattern: str) -> None:
        pattern = re.compile(domain_pattern, re.IGNORECASE)
        store = self.profile.cookieStore()
        removed = 0
        for key, cookie in list(self._cookies.items()):
            if pattern.search(cookie.domain().lstrip(".")):
                store.deleteCookie(cookie)
                del self._cookies[key]
                removed += 1
        logger.debug("Deleted %d cookies matching %s", removed, domain_pattern)

    def run_login_dialog(self, url: str, is_complete: LoginCompletionCheck) -> bool:
        return self.invoke(self._run_login_dialog_on_gui, url, is_complete)

    def _run_login_dialog_on_gui(self, url: str, is_complete: LoginCompletionCheck) -> bool:
        dialog = SteamLoginBrowserDialog(self, url, is_complete, self._parent_widget)
        dialog.exec()
        completed = dialog.completed
        dialog.deleteLater()
        return completed
