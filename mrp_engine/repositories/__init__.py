"""
Repository layer for data access.

Repositories encapsulate SQLAlchemy queries for planning inputs (master data,
calendar) and for the records the engine owns (runs, recommendations, dependent demand).
Every query is scoped by company id or by a run that belongs to one company.
"""
