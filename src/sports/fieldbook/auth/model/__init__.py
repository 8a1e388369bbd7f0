"""SQLAlchemy models for users, federated identity links and refresh tokens.

All tables share the declarative ``Base`` from ``base.py`` so that a single
``Base.metadata`` describes the schema managed by the alembic revisions.
"""
