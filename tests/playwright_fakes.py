"""Hand-rolled stand-ins for the slice of the Playwright page API the flows use."""
from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


def logged_events(stream: io.StringIO) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def messages(stream: io.StringIO) -> List[str]:
    return [event.get("message", "") for event in logged_events(stream)]


class FakeKeyboard:
    def __init__(self, page: "FakePage") -> None:
        self.page = page

    async def press(self, key: str) -> None:
        self.page.actions.append(("press", key, None))

    async def type(self, text: str) -> None:
        self.page.actions.append(("type", self.page.focused, text))
        if self.page.focused is not None:
            self.page.values[self.page.focused] = text


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def _record(self, kind: str, value: Any = None) -> None:
        if self.selector in self.page.broken:
            raise RuntimeError(f"{kind} failed for {self.selector}")
        self.page.actions.append((kind, self.selector, value))
        hook = self.page.on_action.get((kind, self.selector))
        if hook is not None:
            hook(self.page)

    async def wait_for(self, state: str = "visible", timeout: Optional[int] = None) -> None:
        if self.selector not in self.page.visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms waiting for {self.selector}")

    async def is_visible(self) -> bool:
        return self.selector in self.page.visible

    async def count(self) -> int:
        if self.selector in self.page.counts:
            return self.page.counts[self.selector]
        return 1 if self.selector in self.page.visible else 0

    async def click(self, timeout: Optional[int] = None, force: bool = False) -> None:
        self._record("click")
        self.page.focused = self.selector

    async def fill(self, value: str, timeout: Optional[int] = None) -> None:
        self._record("fill", value)
        if self.selector not in self.page.dropped_fills:
            self.page.values[self.selector] = value

    async def hover(self, timeout: Optional[int] = None) -> None:
        self._record("hover")

    async def select_option(self, value: Any, timeout: Optional[int] = None) -> None:
        if self.selector in self.page.unselectable:
            raise RuntimeError(f"no option {value!r} in {self.selector}")
        self._record("select", value)
        self.page.values[self.selector] = value

    async def check(self, timeout: Optional[int] = None) -> None:
        self._record("check")
        self.page.checked[self.selector] = True

    async def is_checked(self) -> bool:
        return self.page.checked.get(self.selector, False)

    async def input_value(self) -> str:
        return self.page.values.get(self.selector, "")

    async def inner_text(self) -> str:
        return self.page.texts.get(self.selector, "")


class FakeDownload:
    def __init__(self, suggested_filename: str, content: bytes) -> None:
        self.suggested_filename = suggested_filename
        self.content = content

    async def save_as(self, path: str) -> None:
        Path(path).write_bytes(self.content)


class _DownloadInfo:
    def __init__(self, page: "FakePage") -> None:
        self.page = page

    @property
    async def value(self) -> FakeDownload:
        return self.page.download


class _ExpectDownload:
    def __init__(self, page: "FakePage", timeout: Optional[int]) -> None:
        self.page = page
        self.timeout = timeout

    async def __aenter__(self) -> _DownloadInfo:
        return _DownloadInfo(self.page)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None and self.page.download is None:
            raise PlaywrightTimeoutError(f"Timeout {self.timeout}ms exceeded while waiting for event \"download\"")
        return False


class FakePage:
    def __init__(
        self,
        *,
        url: str = "about:blank",
        visible: Iterable[str] = (),
        broken: Iterable[str] = (),
        texts: Optional[Dict[str, str]] = None,
        redirects: Optional[Dict[str, str]] = None,
        evaluate: Optional[Callable[[str, Any], Any]] = None,
        download: Optional[FakeDownload] = None,
    ) -> None:
        self.url = url
        self.visible = set(visible)
        self.broken = set(broken)
        self.texts = dict(texts or {})
        self.redirects = dict(redirects or {})
        self.evaluate_handler = evaluate
        self.download = download
        self.counts: Dict[str, int] = {}
        self.values: Dict[str, Any] = {}
        self.checked: Dict[str, bool] = {}
        self.dropped_fills: set[str] = set()
        self.unselectable: set[str] = set()
        self.on_action: Dict[tuple, Callable[["FakePage"], None]] = {}
        self.actions: List[tuple] = []
        self.visited: List[str] = []
        self.screenshots: List[str] = []
        self.scripts: List[tuple] = []
        self.focused: Optional[str] = None
        self.keyboard = FakeKeyboard(self)

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def performed(self, kind: str) -> List[str]:
        return [selector for action, selector, _ in self.actions if action == kind]

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        self.visited.append(url)
        self.url = self.redirects.get(url, url)

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None) -> None:
        return None

    async def screenshot(self, path: str, full_page: bool = False) -> None:
        self.screenshots.append(path)
        Path(path).write_bytes(b"\x89PNG")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.scripts.append((script, arg))
        if self.evaluate_handler is None:
            return None
        return self.evaluate_handler(script, arg)

    def expect_download(self, timeout: Optional[int] = None) -> _ExpectDownload:
        return _ExpectDownload(self, timeout)
