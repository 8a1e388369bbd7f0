"""
Fieldbook Auth - authentication and session service

This package implements the authentication and session lifecycle of the Fieldbook sports
activity booking backend. Students, teachers, admins and plain users sign up or log in
here; the booking services (activities, businesses, places, fields, sports) accept the
access tokens it issues and enforce the roles it declares.

Key Components:
- app: aiohttp application layer with handlers, middlewares and configuration
- security: password hashing, access tokens, refresh token rotation, sessions, the
  authorization gate and federated identity linking
- model: SQLAlchemy models for users, provider links and refresh tokens
- directory.py: user creation and lookup
- errors.py: the typed error taxonomy and the persistence-error translator

Access tokens are short-lived signed JWTs and are never stored. Refresh tokens are stored
as bcrypt hashes and rotated on every use; presenting an already rotated refresh token is
treated as a replay and rejected.
"""
