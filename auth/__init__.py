"""auth/ -- Credential and session-security package for CredGuard.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/; settings arrive as an object through
AuthService.from_settings(). auth/dependencies.py is the one module that
knows about FastAPI.
"""
