"""
Tests for license classification with the grace band.
"""

import pytest

from ingestctl.license import LicenseInfo, LicenseStatus, classify_license, grace_limit

PRO = LicenseInfo(tier="professional", user_limit=100)


class TestGraceLimit:
    def test_ten_percent(self):
        assert grace_limit(100) == 110

    def test_rounds_down(self):
        assert grace_limit(15) == 16


class TestClassifyLicense:
    def test_at_limit_is_compliant(self):
        check = classify_license(PRO, 100)
        assert check.status == LicenseStatus.COMPLIANT
        assert check.grace_limit == 110
        assert not check.exceeded

    def test_within_grace(self):
        assert classify_license(PRO, 108).status == LicenseStatus.GRACE_PERIOD

    def test_at_grace_limit_still_in_grace(self):
        assert classify_license(PRO, 110).status == LicenseStatus.GRACE_PERIOD

    def test_exceeded_counts_from_limit(self):
        check = classify_license(PRO, 115)
        assert check.status == LicenseStatus.EXCEEDED
        assert check.exceeded
        assert check.exceeded_by == 15

    @pytest.mark.parametrize("info", [
        None,
        LicenseInfo(tier="unknown", user_limit=100),
        LicenseInfo(tier="founder", user_limit=100),
        LicenseInfo(tier="starter", user_limit=0),
    ])
    def test_skipped(self, info):
        assert classify_license(info, 500).status == LicenseStatus.SKIPPED

    @pytest.mark.parametrize("users", [None, 0])
    def test_unknown_count(self, users):
        check = classify_license(PRO, users)
        assert check.status == LicenseStatus.UNKNOWN
        assert check.active_users is None

    def test_to_dict(self):
        data = classify_license(PRO, 115).to_dict()
        assert data["status"] == "exceeded"
        assert data["exceeded"] is True
        assert data["tier"] == "professional"

    def test_registry_payload_ignores_extra_fields(self):
        info = LicenseInfo.model_validate({"tier": "pro", "user_limit": 50, "seats_sold": 3})
        assert info.user_limit == 50
