"""Optimistic list state for front-ends.

Deletes and status changes are applied to the displayed rows first and sent
to the backend afterwards. If the backend call fails, the list is reloaded so
the display matches the store again.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from zncrm.utils.logger import log_error, log_debug


RowT = TypeVar("RowT", bound=BaseModel)


class OptimisticList(Generic[RowT]):
    """Rows of one list screen plus the loader that refreshes them."""

    def __init__(self, loader: Callable[[], Awaitable[List[RowT]]]) -> None:
        self._loader = loader
        self._rows: List[RowT] = []

    @property
    def rows(self) -> List[RowT]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def find(self, row_id: str) -> Optional[RowT]:
        return next((row for row in self._rows if getattr(row, "id", None) == row_id), None)

    async def reload(self) -> List[RowT]:
        """Replace the rows with a fresh load; a failed load keeps the current rows."""
        try:
            self._rows = list(await self._loader())
        except Exception as exc:
            log_error(f"Reloading list failed: {exc}")
        return self.rows

    async def remove(self, row_id: str, delete_call: Callable[[], Awaitable[Any]]) -> bool:
        """Drop a row immediately, then delete it in the backend.

        Returns:
            True if the backend delete succeeded, False if the list was reloaded
        """
        self._rows = [row for row in self._rows if getattr(row, "id", None) != row_id]
        try:
            await delete_call()
        except Exception as exc:
            log_error(f"Delete of {row_id} failed, reloading list: {exc}")
            await self.reload()
            return False
        log_debug(f"Deleted {row_id}")
        return True

    async def update(
        self,
        row_id: str,
        changes: Dict[str, Any],
        update_call: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Apply field changes locally, then in the backend; reload on failure."""
        self._rows = [
            row.model_copy(update=changes) if getattr(row, "id", None) == row_id else row
            for row in self._rows
        ]
        try:
            await update_call()
        except Exception as exc:
            log_error(f"Update of {row_id} failed, reloading list: {exc}")
            await self.reload()
            return False
        return True
