# Overview: Caller identity as supplied by the upstream identity provider.

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


ROLE_ADMIN = "ADMIN"
ROLE_CUSTOMER = "CUSTOMER"
ROLE_SYSTEM = "SYSTEM"
VALID_ROLES = {ROLE_ADMIN, ROLE_CUSTOMER}

APPROVAL_APPROVED = "APPROVED"

TIER_RETAIL = "RETAIL"
TIER_WHOLESALE = "WHOLESALE"
VALID_TIERS = {TIER_RETAIL, TIER_WHOLESALE}


class IdentityError(ValueError):
    """Identity headers are missing or malformed (401)."""


@dataclass(frozen=True)
class Actor:
    user_id: str | None
    role: str
    approval_status: str = APPROVAL_APPROVED
    customer_tier: str = TIER_RETAIL

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ROLE_SYSTEM

    @property
    def is_approved(self) -> bool:
        return self.approval_status == APPROVAL_APPROVED


# Actor used for sweeper-driven transitions; ledger rows record user_id=NULL.
SYSTEM_ACTOR = Actor(user_id=None, role=ROLE_SYSTEM)


def actor_from_headers(headers: Mapping[str, str], config: Mapping) -> Actor:
    """
    Build an Actor from trusted gateway headers.

    The core does not authenticate; it only rejects identities it cannot
    interpret.
    """
    user_id = (headers.get(config["IDENTITY_USER_HEADER"]) or "").strip()
    if not user_id:
        raise IdentityError("Authentication required")

    role = (headers.get(config["IDENTITY_ROLE_HEADER"]) or "").strip().upper()
    if role not in VALID_ROLES:
        raise IdentityError("Unknown or missing role")

    status = (headers.get(config["IDENTITY_STATUS_HEADER"]) or "").strip().upper()
    tier = (headers.get(config["IDENTITY_TIER_HEADER"]) or TIER_RETAIL).strip().upper()
    if tier not in VALID_TIERS:
        raise IdentityError("Unknown customer tier")

    return Actor(
        user_id=user_id,
        role=role,
        approval_status=status,
        customer_tier=tier,
    )
