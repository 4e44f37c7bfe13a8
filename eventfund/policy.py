"""
Authorization policy: which identities hold which role.

Loaded once at startup from ``ADMIN_IDENTITIES`` ("email:role,...", role
defaults to admin) and/or an ``ACCESS_POLICY_FILE`` holding
``{"identities": [{"email": ..., "role": ...}]}``. Rotating admins is a
config change, not a code change.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

import orjson

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"


def _norm(identity: str) -> str:
    return identity.strip().lower()


class AccessPolicy:
    def __init__(self, roles: Optional[Mapping[str, str]] = None) -> None:
        self._roles: Dict[str, str] = {
            _norm(k): v.strip().lower() for k, v in (roles or {}).items()
            if k.strip()
        }

    def __len__(self) -> int:
        return len(self._roles)

    def role_of(self, identity: Optional[str]) -> Optional[str]:
        if not identity:
            return None
        return self._roles.get(_norm(identity))

    def is_admin(self, identity: Optional[str]) -> bool:
        return self.role_of(identity) == ROLE_ADMIN

    @classmethod
    def parse(cls, identities: Optional[str]) -> "AccessPolicy":
        roles: Dict[str, str] = {}
        for part in (identities or "").split(","):
            part = part.strip()
            if not part:
                continue
            email, _, role = part.partition(":")
            roles[email] = role or ROLE_ADMIN
        return cls(roles)

    @classmethod
    def load(
        cls, identities: Optional[str] = None, path: Optional[str] = None
    ) -> "AccessPolicy":
        roles = dict(cls.parse(identities)._roles)
        if path:
            doc = orjson.loads(Path(path).read_bytes())
            for ent in doc.get("identities", []):
                email = ent.get("email")
                if email:
                    roles[email] = ent.get("role") or ROLE_ADMIN
        policy = cls(roles)
        if not policy:
            logger.warning("access policy is empty; admin actions disabled")
        return policy
