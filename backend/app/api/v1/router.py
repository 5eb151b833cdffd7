"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import groups, expenses, group_events

router = APIRouter()

# Groups and membership
router.include_router(groups.router)

# Expenses and settlements
router.include_router(expenses.router)

# Group event stream (WebSocket)
router.include_router(group_events.router)
