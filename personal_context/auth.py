"""
Request-scoped dependencies for the tool router.

- get_store / get_gate hand out the process-wide EntityStore and AuthGate that
  create_app put on app.state.
- authorize(gate, raw, scope) verifies the bearer credential and checks one
  scope; it is the only path from a request to the store.
"""
from fastapi import Header, Request

from personal_context.security import AuthGate, Claims
from personal_context.services.entity_store import EntityStore


def get_store(request: Request) -> EntityStore:
    """FastAPI dependency: the single EntityStore owned by this process."""
    return request.app.state.store


def get_gate(request: Request) -> AuthGate:
    return request.app.state.gate


def get_authorization(authorization: str | None = Header(default=None)) -> str:
    """Raw Authorization header value; empty when absent so the gate rejects it."""
    return authorization or ""


def authorize(gate: AuthGate, raw_token: str, required_scope: str) -> Claims:
    """Verify the credential, then the scope. Raises AuthError on either failure."""
    claims = gate.verify(raw_token)
    gate.require_scope(claims, required_scope)
    return claims
