from pydantic import BaseModel, Field
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")


class PageRequest(BaseModel):
    """
    Offset pagination input.  Values are taken as given and clamped by
    backoffice.query_builder.paginate(), so garbage never fails validation.
    """
    page: Any = 1
    page_size: Any = 20
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None


class CursorRequest(BaseModel):
    """Cursor pagination input.  The cursor is an opaque row offset."""
    cursor: Optional[str] = None
    page_size: Any = 20
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None


class ListResult(BaseModel, Generic[T]):
    """A page of results.  error is set (and data empty) when the list failed."""
    data: List[T] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20
    error: Optional[str] = None

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0


class CursorPage(BaseModel, Generic[T]):
    data: List[T] = Field(default_factory=list)
    next_cursor: Optional[str] = None     # None when this is the last page
    page_size: int = 20
    error: Optional[str] = None
