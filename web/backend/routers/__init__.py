"""API route handlers."""

from .scoring import router as scoring_router
from .workflow import router as workflow_router
from .search import router as search_router
from .credits import router as credits_router
from .realtime import router as realtime_router
