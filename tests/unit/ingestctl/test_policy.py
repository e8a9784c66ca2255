"""
Tests for organization policy decoding.
"""

import yaml

from ingestctl.policy import ALLOWED_MEMBER_DOMAINS, EnforcementMode, OrgPolicy, allow_all_override


def decode(data):
    return OrgPolicy.from_gcloud(data, ALLOWED_MEMBER_DOMAINS)


class TestOrgPolicy:
    def test_empty_document_is_not_set(self):
        policy = decode({})
        assert policy.mode == EnforcementMode.NOT_SET
        assert policy.constraint == "constraints/iam.allowedPolicyMemberDomains"
        assert not policy.blocks_public_members

    def test_allow_all(self):
        policy = decode({"listPolicy": {"allValues": "ALLOW"}})
        assert policy.mode == EnforcementMode.ALLOW_ALL
        assert not policy.blocks_public_members

    def test_deny_all(self):
        policy = decode({"listPolicy": {"allValues": "DENY"}})
        assert policy.mode == EnforcementMode.DENY_ALL
        assert policy.blocks_public_members

    def test_restricted_to_customer(self):
        policy = decode({"listPolicy": {"allowedValues": ["C0abc123"]}, "etag": "BwX"})
        assert policy.mode == EnforcementMode.RESTRICTED
        assert policy.blocks_public_members
        assert policy.etag == "BwX"

    def test_boolean_enforced(self):
        policy = OrgPolicy.from_gcloud(
            {"booleanPolicy": {"enforced": True}}, "iam.disableServiceAccountKeyCreation",
        )
        assert policy.mode == EnforcementMode.ENFORCED


class TestAllowAllOverride:
    def test_document(self):
        doc = yaml.safe_load(allow_all_override())
        assert doc == {
            "constraint": "constraints/iam.allowedPolicyMemberDomains",
            "listPolicy": {"allValues": "ALLOW"},
        }
