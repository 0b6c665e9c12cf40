"""
Orienteer Backend — Application Package Initializer
=====================================================

What: Marks the `app` directory as a Python package.
Who:  Imported by Alembic, pytest, and uvicorn (`uvicorn app.main:app`).

Architecture Note:
    The backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← visibility rules, map decoding,
    │                                     │    users / events / activity
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Two services are pure and have no dependency on the layers below them:
    - services/visibility.py  — who may see / edit which record
    - services/quickroute.py  — QuickRoute JPEG geocoding decoder
"""

__version__ = "1.0.0"
