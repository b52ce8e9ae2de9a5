"""Page/limit arithmetic shared by the list endpoints."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Query

from socialhub.config import settings


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return self.page * self.limit

    def next_page(self, total: int) -> Optional[int]:
        """Index of the following page, or None when this one is the last."""
        return self.page + 1 if (self.page + 1) * self.limit < total else None


def page_params(
    page: int = Query(0, ge=0),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
) -> Page:
    return Page(page=page, limit=limit)
