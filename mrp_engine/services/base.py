from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services keep planning logic and orchestration, delegating data access
    to repositories. Engine services that outlive one request (the orchestrator)
    take a session factory instead and open one session per unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
