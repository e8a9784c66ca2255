"""
Tests for deterministic resource naming.
"""

import pytest

from ingestctl import naming


class TestDomains:
    @pytest.mark.parametrize("domain", ["acme.com", "acme.co.uk", "my-company.io"])
    def test_valid(self, domain):
        assert naming.is_valid_domain(domain)

    @pytest.mark.parametrize("domain", ["", "acme", "-acme.com", "acme..com", "../x.com", "acme.c"])
    def test_invalid(self, domain):
        assert not naming.is_valid_domain(domain)

    def test_normalize(self):
        assert naming.normalize_domain("  Acme.COM. ") == "acme.com"


class TestProjectId:
    def test_derived_from_domain(self):
        assert naming.project_id("acme.com") == "acme-com-ingestion"

    def test_deterministic(self):
        assert naming.project_id("Acme.com") == naming.project_id("acme.com")

    def test_long_domain_truncated(self):
        pid = naming.project_id("averyveryverylongcompanyname.example.com")
        assert len(pid) <= 30
        assert not pid.endswith("-")

    def test_suffix_fits_within_limit(self):
        pid = naming.project_id("averyveryverylongcompanyname.example.com", suffix=3)
        assert len(pid) <= 30
        assert pid.endswith("-3")

    def test_candidates(self):
        candidates = naming.project_id_candidates("acme.com")
        assert candidates[0] == "acme-com-ingestion"
        assert candidates[1:] == [f"acme-com-ingestion-{n}" for n in range(2, 10)]


class TestResourceNames:
    def test_display_name_drops_tld(self):
        assert naming.project_display_name("acme.co.uk") == "Ingestion - acme co"

    def test_display_name_limited(self):
        assert len(naming.project_display_name("averyveryverylongcompanyname.com")) <= 30

    def test_buckets(self):
        assert naming.tfstate_bucket("p") == "p-tfstate"
        assert naming.data_buckets("p") == ["p-recordings", "p-voice"]
        assert naming.function_source_bucket("p") == "p-function-source"

    def test_service_accounts(self):
        assert naming.service_account_email("gmail-sync-sa", "p") == "gmail-sync-sa@p.iam.gserviceaccount.com"
        assert naming.compute_service_account("123") == "123-compute@developer.gserviceaccount.com"

    def test_secret_name(self):
        assert naming.secret_name("TELEGRAM_BOT_TOKEN") == "CORCO_TELEGRAM_BOT_TOKEN"

    def test_tfvars_filename(self):
        assert naming.tfvars_filename("Acme.com") == "acme.com.tfvars"
