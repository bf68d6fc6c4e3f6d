"""
Execution context for page-side functions.

Page-side work (candidate collection, selector discovery, patch
application) is written as plain functions taking the document root as
their first argument. A PageContext runs such a function against the page
loaded in a given tab.

DocumentPageContext keeps one parsed BeautifulSoup document per tab.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, TypeVar

from bs4 import BeautifulSoup

from pdpkit.errors import PageContextError
from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ExecutionWorld(str, Enum):
    """Where a page-side function runs."""

    ISOLATED = "isolated"  # sandboxed script world
    MAIN = "main"  # the page's own world


class PageContext(Protocol):
    """Runs a page-side function against the document of a tab."""

    async def execute(
        self,
        tab_id: int,
        func: Callable[..., T],
        *args: Any,
        world: ExecutionWorld = ExecutionWorld.ISOLATED,
    ) -> T: ...


class DocumentPageContext:
    """In-process PageContext over parsed HTML documents."""

    def __init__(self, parser: str = "html.parser") -> None:
        self._parser = parser
        self._documents: dict[int, BeautifulSoup] = {}
        self._urls: dict[int, str] = {}

    def load(self, tab_id: int, html: str, url: str = "") -> BeautifulSoup:
        """Parse `html` as the current page of `tab_id`."""
        document = BeautifulSoup(html, self._parser)
        self._documents[tab_id] = document
        self._urls[tab_id] = url
        logger.debug("Page loaded", tab_id=tab_id, url=url, html_len=len(html))
        return document

    def unload(self, tab_id: int) -> None:
        self._documents.pop(tab_id, None)
        self._urls.pop(tab_id, None)

    def document(self, tab_id: int) -> BeautifulSoup:
        """Get the document of a tab.

        Raises:
            PageContextError: If no page is loaded in the tab.
        """
        document = self._documents.get(tab_id)
        if document is None:
            raise PageContextError(f"No page loaded in tab {tab_id}", tab_id=tab_id)
        return document

    def url(self, tab_id: int) -> str:
        return self._urls.get(tab_id, "")

    def html(self, tab_id: int) -> str:
        """Serialize the current document of a tab."""
        return self.document(tab_id).decode()

    async def execute(
        self,
        tab_id: int,
        func: Callable[..., T],
        *args: Any,
        world: ExecutionWorld = ExecutionWorld.ISOLATED,
    ) -> T:
        document = self.document(tab_id)
        logger.debug(
            "Executing in page",
            tab_id=tab_id,
            func=getattr(func, "__name__", repr(func)),
            world=world.value,
        )
        return func(document, *args)
