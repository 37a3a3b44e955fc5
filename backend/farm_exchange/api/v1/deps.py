"""
Request dependencies.

WHAT: Resolve the pre-authenticated caller for each request
WHY: Session issuance lives upstream; the core only needs id and role
HOW: Read X-Profile-Id, resolve through the capability gate
"""

from typing import Optional

from fastapi import Header

from ...services.capability_gate import Caller, capability_gate


def get_caller(x_profile_id: Optional[str] = Header(None)) -> Caller:
    """Caller for the request; raises UnauthenticatedError when missing or unknown."""
    return capability_gate.resolve_caller(x_profile_id)
