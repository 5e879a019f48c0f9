# src/domain/interfaces.py
"""
Domain-facing client and repository interfaces (Protocols).

These reflect only what the pipeline services actually use. Concrete
implementations satisfy them via duck typing; there is no inheritance
requirement.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class TextGenerator(Protocol):
    """Text generation provider used by the sentiment and summary stages"""

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> str: ...


@runtime_checkable
class IAnalysisJobRepository(Protocol):
    """Persistence operations JobLifecycle relies on"""

    async def get_by_id(self, id: str) -> Optional[Any]: ...

    async def create(self, **kwargs: Any) -> Any: ...

    async def update(self, id: str, **kwargs: Any) -> Optional[Any]: ...

    async def count_by_status(self) -> Dict[str, int]: ...

    async def list_by_user(self, user_id: str, limit: int = 20) -> List[Any]: ...

    async def delete_finished_before(self, cutoff: datetime) -> int: ...


@runtime_checkable
class IAnalysisResultRepository(Protocol):
    """Persistence operations the orchestrator relies on"""

    async def get_latest_for_post(self, post_id: str) -> Optional[Any]: ...

    async def get_by_job(self, job_id: str) -> Optional[Any]: ...

    async def relink_to_job(self, result_id: str, job_id: str) -> None: ...

    async def save_outcome(self, outcome: Any, analyzed_at: datetime) -> Any: ...


@runtime_checkable
class ICommentRepository(Protocol):
    async def get_by_ids(self, comment_ids: Sequence[str]) -> List[Any]: ...

    async def get_valid_by_post(self, post_id: str) -> List[Any]: ...

    async def count_by_post(self, post_id: str) -> int: ...

    async def count_valid_by_post(self, post_id: str) -> int: ...
