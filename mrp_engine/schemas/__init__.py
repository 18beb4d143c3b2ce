"""
Public Pydantic schemas used by FastAPI routes, services, and tests.

`mrp` holds run submission/read models and the typed calculation_details payload;
`common` holds the response envelopes shared by every route.
"""

from .common import MessageResponse  # noqa: F401
