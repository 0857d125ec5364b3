"""
Users Service package for the User Profile service.

This package exposes the FastAPI application that mirrors Keycloak
identities into a local profile store and serves them over HTTP:

- app.main: Application entrypoint that wires routes and lifecycle.
- app.auth: Bearer token verification and identity mapping.
- app.jwks: JWKS client for fetching and caching signing keys.
- app.users: Profile models, MongoDB repository and business rules.

Design notes:
- Keep the package import side-effects minimal; module import must not
  perform network calls. All IO should happen in route handlers or
  explicit startup hooks.
- Use the shared/ utilities for logging, metrics, and errors.
- Credentials are never stored here; the upstream IdP (Keycloak) owns them.
"""
