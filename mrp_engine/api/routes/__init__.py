"""
API route modules for the planning engine.

This package contains subrouters for:
- MRP: run submission, status, cancellation and recommendation listing

Routers are included from mrp_engine.api.main (under the /api/v1 prefix).
"""
