"""
Execution context for page-side functions.
"""

from pdpkit.page.context import DocumentPageContext, ExecutionWorld, PageContext

__all__ = [
    "DocumentPageContext",
    "ExecutionWorld",
    "PageContext",
]
