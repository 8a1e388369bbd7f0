"""
Credential and session primitives.

- passwords.py: bcrypt hashing off the event loop
- tokens.py: HS256 access token signing and verification
- refresh_tokens.py: hashed refresh token records with atomic rotation
- sessions.py: sign-up, login, credential checks and token rotation
- gate.py: per-operation authentication and role checks
- federated.py: linking third-party identities to local users
"""
