"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from flatwatch.api import app

    uvicorn flatwatch.api:app --reload
"""

from flatwatch.api.app import app

__all__ = ["app"]
