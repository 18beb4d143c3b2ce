"""
Core application utilities for the planning engine.

This package provides:
- Application and engine settings (separate from DB settings)
- Logging configuration with run/company/correlation context
- Enumerations and the error taxonomy
- FastAPI dependency helpers (company extraction, engine runtime, sessions)
"""
