"""HTTP client for the hosted board backend.

Talks to a PostgREST-style REST API (``{url}/rest/v1/{table}``) that owns
durability and row-level authorization. Authentication happens elsewhere;
this client only forwards the project API key and the user's access token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..board.models import (
    Board,
    BoardCreate,
    BoardWithColumns,
    Column,
    ColumnCreate,
    Task,
    TaskCreate,
    build_hierarchy,
)
from ..board.reorder import ColumnPositionUpdate, PositionUpdate, TaskPositionUpdate

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ("To Do", "In Progress", "Review", "Done")


class PersistenceFailure(Exception):
    """Raised when a backend call fails (HTTP error, network, authorization)."""

    def __init__(self, message: str, status_code: int = 0, detail: str = ""):
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class PartialBatchFailure(PersistenceFailure):
    """Some updates of a multi-entity reconciliation failed while others went through."""

    def __init__(
        self,
        succeeded_ids: list[str],
        failed_ids: list[str],
        detail: str = "",
        unrepaired_ids: list[str] | None = None,
    ):
        self.succeeded_ids = succeeded_ids
        self.failed_ids = failed_ids
        self.unrepaired_ids = unrepaired_ids or []
        message = (
            f"{len(failed_ids)} of {len(succeeded_ids) + len(failed_ids)} "
            f"position updates failed: {', '.join(failed_ids)}"
        )
        if self.unrepaired_ids:
            message += f"; stored order left inconsistent for {', '.join(self.unrepaired_ids)}"
        super().__init__(message, detail=detail)


@dataclass
class BatchItemResult:
    """Outcome of one update inside a batch call."""

    op: PositionUpdate
    row: Column | Task | None = None
    error: PersistenceFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _in_filter(values: list[str]) -> str:
    return f"in.({','.join(values)})"


class BoardStore:
    """Async client for boards, columns and tasks.

    All methods raise PersistenceFailure on failure, except the batch
    variants which report per-item results.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Any) -> BoardStore:
        return cls(
            config.url,
            config.api_key,
            access_token=config.access_token,
            timeout=config.timeout,
        )

    def set_access_token(self, token: str) -> None:
        """Swap the user token after the identity provider refreshed it."""
        self._client.headers["Authorization"] = f"Bearer {token}"

    # --- Boards ---

    async def list_boards(self, user_id: str) -> list[Board]:
        rows = await self._request(
            "GET",
            "/boards",
            params={"user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )
        return [Board.model_validate(r) for r in rows]

    async def get_board(self, board_id: str) -> Board:
        rows = await self._request("GET", "/boards", params={"id": f"eq.{board_id}"})
        return Board.model_validate(self._single(rows, "Board", board_id))

    async def create_board(self, data: BoardCreate) -> Board:
        rows = await self._write("POST", "/boards", json=data.model_dump())
        return Board.model_validate(self._single(rows, "Board", data.title))

    async def update_board(self, board_id: str, data: dict[str, Any]) -> Board:
        rows = await self._write("PATCH", "/boards", json=data, params={"id": f"eq.{board_id}"})
        return Board.model_validate(self._single(rows, "Board", board_id))

    async def delete_board(self, board_id: str) -> None:
        await self._request("DELETE", "/boards", params={"id": f"eq.{board_id}"})

    async def bulk_delete_boards(self, board_ids: list[str]) -> None:
        if not board_ids:
            return
        await self._request("DELETE", "/boards", params={"id": _in_filter(board_ids)})

    # --- Columns ---

    async def list_columns(self, board_id: str) -> list[Column]:
        rows = await self._request(
            "GET",
            "/columns",
            params={"board_id": f"eq.{board_id}", "order": "sort_order.asc"},
        )
        return [Column.model_validate(r) for r in rows]

    async def create_column(self, data: ColumnCreate) -> Column:
        rows = await self._write("POST", "/columns", json=data.model_dump())
        return Column.model_validate(self._single(rows, "Column", data.title))

    async def update_column(self, column_id: str, data: dict[str, Any]) -> Column:
        rows = await self._write(
            "PATCH", "/columns", json=data, params={"id": f"eq.{column_id}"}
        )
        return Column.model_validate(self._single(rows, "Column", column_id))

    async def delete_column(self, column_id: str) -> None:
        await self._request("DELETE", "/columns", params={"id": f"eq.{column_id}"})

    # --- Tasks ---

    async def list_tasks(self, column_ids: list[str]) -> list[Task]:
        if not column_ids:
            return []
        rows = await self._request(
            "GET",
            "/tasks",
            params={"column_id": _in_filter(column_ids), "order": "sort_order.asc"},
        )
        return [Task.model_validate(r) for r in rows]

    async def create_task(self, data: TaskCreate) -> Task:
        rows = await self._write("POST", "/tasks", json=data.model_dump(mode="json"))
        return Task.model_validate(self._single(rows, "Task", data.title))

    async def update_task(self, task_id: str, data: dict[str, Any]) -> Task:
        rows = await self._write("PATCH", "/tasks", json=data, params={"id": f"eq.{task_id}"})
        return Task.model_validate(self._single(rows, "Task", task_id))

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", "/tasks", params={"id": f"eq.{task_id}"})

    # --- Composite ---

    async def get_board_with_columns(self, board_id: str) -> BoardWithColumns:
        """Load a board with its columns and tasks, ordered for display."""
        board = await self.get_board(board_id)
        columns = await self.list_columns(board_id)
        tasks = await self.list_tasks([c.id for c in columns])
        return BoardWithColumns(board=board, hierarchy=build_hierarchy(board_id, columns, tasks))

    async def create_board_with_default_columns(
        self,
        title: str,
        user_id: str,
        description: str | None = None,
        color: str = "blue",
    ) -> Board:
        board = await self.create_board(
            BoardCreate(title=title, user_id=user_id, description=description, color=color)
        )
        rows = [
            ColumnCreate(board_id=board.id, title=name, user_id=user_id, sort_order=i).model_dump()
            for i, name in enumerate(DEFAULT_COLUMNS)
        ]
        await self._write("POST", "/columns", json=rows)
        logger.info("Created board %s with %d default columns", board.id, len(rows))
        return board

    # --- Positions ---

    async def update_column_position(self, column_id: str, sort_order: int) -> Column:
        return await self.update_column(column_id, {"sort_order": sort_order})

    async def update_task_position(self, task_id: str, column_id: str, sort_order: int) -> Task:
        return await self.update_task(task_id, {"column_id": column_id, "sort_order": sort_order})

    async def apply_op(self, op: PositionUpdate) -> Column | Task:
        """Persist a single position update produced by the reorder engine."""
        if isinstance(op, ColumnPositionUpdate):
            return await self.update_column_position(op.column_id, op.sort_order)
        return await self.update_task_position(op.task_id, op.column_id, op.sort_order)

    async def update_column_positions(
        self, ops: list[ColumnPositionUpdate]
    ) -> list[BatchItemResult]:
        return await self._apply_batch(ops)

    async def update_task_positions(self, ops: list[TaskPositionUpdate]) -> list[BatchItemResult]:
        return await self._apply_batch(ops)

    async def _apply_batch(self, ops: list[PositionUpdate]) -> list[BatchItemResult]:
        """Send every update; failures are reported per item, in input order."""

        async def _one(op: PositionUpdate) -> BatchItemResult:
            try:
                return BatchItemResult(op=op, row=await self.apply_op(op))
            except PersistenceFailure as e:
                logger.warning("Position update for %s failed: %s", op.entity_id, e.message)
                return BatchItemResult(op=op, error=e)

        return list(await asyncio.gather(*(_one(op) for op in ops)))

    # --- Lifecycle ---

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> BoardStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Internal ---

    @staticmethod
    def _single(rows: Any, entity: str, key: str) -> dict[str, Any]:
        if isinstance(rows, dict):
            return rows
        if not rows:
            raise PersistenceFailure(f"{entity} {key} not found", status_code=404)
        return rows[0]

    async def _write(
        self,
        method: str,
        url: str,
        json: Any,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await self._request(
            method,
            url,
            json=json,
            params=params,
            headers={"Prefer": "return=representation"},
        )

    async def _request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make a request to the backend.

        Raises:
            PersistenceFailure: On HTTP errors or connection failures.
        """
        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
            )

            if response.status_code >= 400:
                try:
                    body = response.json()
                except ValueError:
                    detail = response.text[:200]
                else:
                    if isinstance(body, dict):
                        detail = body.get("message") or body.get("detail") or str(body)
                    else:
                        detail = str(body)

                raise PersistenceFailure(
                    f"{method} {url} returned {response.status_code}: {detail}",
                    status_code=response.status_code,
                    detail=detail,
                )

            if not response.content:
                return []

            return response.json()

        except httpx.ConnectError as e:
            raise PersistenceFailure(
                f"Cannot connect to backend: {e}",
                detail=str(e),
            ) from e
        except httpx.TimeoutException as e:
            raise PersistenceFailure(
                f"Request timed out: {method} {url}",
                detail=str(e),
            ) from e
        except PersistenceFailure:
            raise
        except httpx.HTTPError as e:
            raise PersistenceFailure(
                f"Unexpected error: {e}",
                detail=str(e),
            ) from e
