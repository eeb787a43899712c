"""
Pagination Module
"""

from typing import Any, List

from pydantic import BaseModel

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class PaginationParams(BaseModel):
    """分页参数"""
    page: int = 1
    size: int = DEFAULT_PAGE_SIZE

    def __init__(self, **data):
        super().__init__(**data)
        if self.page < 1:
            self.page = 1
        if self.size < 1:
            self.size = DEFAULT_PAGE_SIZE
        if self.size > MAX_PAGE_SIZE:
            self.size = MAX_PAGE_SIZE


class Page(BaseModel):
    """远端返回的一页数据，total 为远端当次报告的总数"""
    items: List[Any]
    total: int

    @property
    def is_empty(self) -> bool:
        return not self.items


def clamp_page_size(size: int) -> int:
    return PaginationParams(size=size).size


def expected_pages(total: int, size: int) -> int:
    """total 条数据按 size 分页所需的页数"""
    if total <= 0:
        return 0
    return (total + size - 1) // size
