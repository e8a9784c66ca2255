"""
Typed decoding of organization policies.

``gcloud resource-manager org-policies describe --format=json`` returns a
loosely shaped document; ``OrgPolicy`` decodes it into a model with an
``EnforcementMode`` so callers branch on an enum rather than grepping JSON.
The constraint of interest is ``iam.allowedPolicyMemberDomains``, which
blocks ``allUsers`` bindings and therefore public webhooks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

ALLOWED_MEMBER_DOMAINS = "iam.allowedPolicyMemberDomains"


def constraint_path(constraint: str) -> str:
    return constraint if constraint.startswith("constraints/") else f"constraints/{constraint}"


class AllValues(str, Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class EnforcementMode(str, Enum):
    """How a list constraint is enforced on the project."""
    NOT_SET = "not_set"
    ALLOW_ALL = "allow_all"
    RESTRICTED = "restricted"
    DENY_ALL = "deny_all"
    ENFORCED = "enforced"


class ListPolicy(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    allowed_values: List[str] = Field(default_factory=list, alias="allowedValues")
    denied_values: List[str] = Field(default_factory=list, alias="deniedValues")
    all_values: Optional[AllValues] = Field(default=None, alias="allValues")


class BooleanPolicy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enforced: bool = False


class OrgPolicy(BaseModel):
    """Effective organization policy for one constraint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    constraint: str
    etag: Optional[str] = None
    list_policy: Optional[ListPolicy] = Field(default=None, alias="listPolicy")
    boolean_policy: Optional[BooleanPolicy] = Field(default=None, alias="booleanPolicy")

    @classmethod
    def from_gcloud(cls, data: Dict[str, Any], constraint: str) -> "OrgPolicy":
        payload = dict(data)
        payload.setdefault("constraint", constraint_path(constraint))
        return cls.model_validate(payload)

    @property
    def mode(self) -> EnforcementMode:
        if self.boolean_policy is not None and self.boolean_policy.enforced:
            return EnforcementMode.ENFORCED
        lp = self.list_policy
        if lp is None:
            return EnforcementMode.NOT_SET
        if lp.all_values == AllValues.ALLOW:
            return EnforcementMode.ALLOW_ALL
        if lp.all_values == AllValues.DENY:
            return EnforcementMode.DENY_ALL
        if lp.allowed_values or lp.denied_values:
            return EnforcementMode.RESTRICTED
        return EnforcementMode.NOT_SET

    @property
    def blocks_public_members(self) -> bool:
        """True when ``allUsers`` bindings would be rejected."""
        return self.mode in (EnforcementMode.RESTRICTED, EnforcementMode.DENY_ALL)


def allow_all_override(constraint: str = ALLOWED_MEMBER_DOMAINS) -> str:
    """YAML document for ``org-policies set-policy`` lifting a list constraint on one project."""
    return yaml.safe_dump(
        {
            "constraint": constraint_path(constraint),
            "listPolicy": {"allValues": AllValues.ALLOW.value},
        },
        sort_keys=False,
    )
