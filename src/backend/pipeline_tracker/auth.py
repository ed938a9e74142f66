"""
Authenticated principal seam.

Credential issuance and session validation live in an upstream auth service;
by the time a request reaches this app the gateway has resolved the recruiter
and forwards the id in a trusted header. Swap the resolver to integrate a
different producer.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .errors import UnauthorizedError


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    owner_id: str


class PrincipalResolver:
    def resolve(self, request: Request) -> AuthenticatedPrincipal:
        raise NotImplementedError


class HeaderPrincipalResolver(PrincipalResolver):
    def __init__(self, header_name: str = "X-Recruiter-Id"):
        self.header_name = header_name

    def resolve(self, request: Request) -> AuthenticatedPrincipal:
        owner_id = (request.headers.get(self.header_name) or "").strip()
        if not owner_id:
            raise UnauthorizedError("Please log in to access this resource. No authenticated recruiter provided.")
        return AuthenticatedPrincipal(owner_id=owner_id)


def get_principal(request: Request) -> AuthenticatedPrincipal:
    resolver: PrincipalResolver = request.app.state.principal_resolver
    return resolver.resolve(request)
