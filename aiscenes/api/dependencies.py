"""FastAPI dependency providers for stores and services.

Routes depend on these rather than constructing services themselves so tests
can swap in in-memory stores through `app.dependency_overrides`.
"""

from __future__ import annotations

from fastapi import Depends

from aiscenes.auth.middleware import AuthenticatedUser, get_current_user
from aiscenes.ltree.service import HybridAddrService
from aiscenes.ltree.store import NodeStore, SqlNodeStore
from aiscenes.n8n.service import N8nService
from aiscenes.n8n.store import ExecutionStore, SqlExecutionStore
from aiscenes.nodes.access import JobAccess
from aiscenes.storyboard.service import StoryboardService
from aiscenes.storyboard.store import SqlStoryboardJobStore, StoryboardJobStore


def get_node_store() -> NodeStore:
    return SqlNodeStore()


def get_execution_store() -> ExecutionStore:
    return SqlExecutionStore()


def get_storyboard_store() -> StoryboardJobStore:
    return SqlStoryboardJobStore()


def get_hybrid_service(store: NodeStore = Depends(get_node_store)) -> HybridAddrService:
    return HybridAddrService(store)


def get_job_access(
    store: NodeStore = Depends(get_node_store),
    user: AuthenticatedUser = Depends(get_current_user),
) -> JobAccess:
    return JobAccess(store, user.user_id)


def get_n8n_service(
    store: ExecutionStore = Depends(get_execution_store),
    node_store: NodeStore = Depends(get_node_store),
) -> N8nService:
    return N8nService(store, node_store)


def get_storyboard_service(
    store: StoryboardJobStore = Depends(get_storyboard_store),
) -> StoryboardService:
    return StoryboardService(store)
