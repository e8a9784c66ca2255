"""
Timeout, wait and retry constants for ingestctl.

Centralizes timeout values to ensure consistency across the codebase
and make tuning easier. Waits that operators may want to shorten are
also exposed through ``IngestCtlConfig``; these are the defaults.
"""

from __future__ import annotations

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for gcloud, gsutil and bq invocations
SUBPROCESS_DEFAULT_TIMEOUT_S = 300

# terraform apply / destroy can take a long time on a fresh project
TERRAFORM_TIMEOUT_S = 1800

# =============================================================================
# HTTP Client Timeouts
# =============================================================================

# Default timeout for registry requests
HTTP_CLIENT_TIMEOUT_S = 30.0

# Package download may be several megabytes
HTTP_DOWNLOAD_TIMEOUT_S = 120.0

# Health probes of deployed functions
HTTP_HEALTH_CHECK_TIMEOUT_S = 10.0

# =============================================================================
# Propagation Waits
# =============================================================================

# IAM grants become visible in get-iam-policy after this delay
IAM_PROPAGATION_WAIT_S = 10.0

# Organization policy changes propagate more slowly
ORG_POLICY_PROPAGATION_WAIT_S = 30.0

# Time given to the ingestion pipeline before checking BigQuery
PIPELINE_WAIT_S = 120.0

# =============================================================================
# Retry Configuration
# =============================================================================

# Recoverable CLI failures are retried exactly once
COMMAND_MAX_RETRIES = 1

# Registry HTTP calls
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_RETRY_BACKOFF = 2.0

# HTTP status codes that should trigger a retry
RETRYABLE_HTTP_STATUS_CODES = frozenset({502, 503, 504, 429})
