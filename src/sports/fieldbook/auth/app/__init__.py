"""
Web application layer for the Fieldbook auth service.

- config.py: Settings and the typed AppKeys used for dependency injection
- server.py: application factory, middlewares and the startup/shutdown context
- policies.py: role requirements per named route
- handlers/: request handlers for the auth and internal endpoints
- tasks.py: background health tick and refresh token purge
- metrics.py: vendor-agnostic metrics clients
- cli.py: process entry point
"""
