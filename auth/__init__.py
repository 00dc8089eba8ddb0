"""auth/ -- Authentication and session-security core for the salon management app.

Entry point for host applications: auth.service.AuthSessionService, built
over a CredentialStore from auth.store. Pure validators for registration
forms live in auth.validation.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
