"""Names of the facts kept in a deployment's state record."""

# preflight
OPERATOR_ACCOUNT = "OPERATOR_ACCOUNT"

# company_info
CLIENT_NAME = "CLIENT_NAME"
ADMIN_FIRST_NAME = "ADMIN_FIRST_NAME"
ADMIN_SURNAME = "ADMIN_SURNAME"
ADMIN_EMAIL = "ADMIN_EMAIL"
ADMIN_PHONE = "ADMIN_PHONE"
ADMIN_TELEGRAM = "ADMIN_TELEGRAM"
CONSULTANT_EMAIL = "CONSULTANT_EMAIL"

# gcp_project
PROJECT_ID = "PROJECT_ID"
PROJECT_NUMBER = "PROJECT_NUMBER"
REGION = "REGION"
BILLING_ACCOUNT = "BILLING_ACCOUNT"

# credentials
ENABLE_TELEGRAM = "ENABLE_TELEGRAM"
ENABLE_TWILIO = "ENABLE_TWILIO"
ENABLE_OPENAI = "ENABLE_OPENAI"
TELEGRAM_GROUP_ID = "TELEGRAM_GROUP_ID"

# historical_import
GMAIL_IMPORT_MODE = "GMAIL_IMPORT_MODE"
GMAIL_SYNC_SINCE = "GMAIL_SYNC_SINCE"
TWILIO_IMPORT_EXISTING = "TWILIO_IMPORT_EXISTING"
TWILIO_IMPORT_SINCE = "TWILIO_IMPORT_SINCE"
MEET_IMPORT_EXISTING = "MEET_IMPORT_EXISTING"

# domain_delegation
SA_EMAIL = "SA_EMAIL"
CLIENT_ID = "CLIENT_ID"
GMAIL_AUTH_METHOD = "GMAIL_AUTH_METHOD"

# license_check
LICENSE_TIER = "LICENSE_TIER"
LICENSE_LIMIT = "LICENSE_LIMIT"
LICENSE_STATUS = "LICENSE_STATUS"
WORKSPACE_USER_COUNT = "WORKSPACE_USER_COUNT"
LICENSE_EXCEEDED_BY = "LICENSE_EXCEEDED_BY"

# infrastructure_deploy
ALLOW_PUBLIC_WEBHOOKS = "ALLOW_PUBLIC_WEBHOOKS"
ORG_POLICY_OVERRIDDEN = "ORG_POLICY_OVERRIDDEN"
GMAIL_SYNC_URL = "GMAIL_SYNC_URL"
TELEGRAM_WEBHOOK_URL = "TELEGRAM_WEBHOOK_URL"
DRIVE_SYNC_URL = "DRIVE_SYNC_URL"
VOICE_ENROLL_URL = "VOICE_ENROLL_URL"
STANDARDIZE_UTTERANCES_URL = "STANDARDIZE_UTTERANCES_URL"
RECORDINGS_BUCKET = "RECORDINGS_BUCKET"
BIGQUERY_DATASET = "BIGQUERY_DATASET"

# registration
REGISTERED = "REGISTERED"

# verification
VERIFICATION_STATUS = "VERIFICATION_STATUS"

# Terraform output name -> state key
TERRAFORM_OUTPUTS = {
    "gmail_sync_url": GMAIL_SYNC_URL,
    "telegram_webhook_url": TELEGRAM_WEBHOOK_URL,
    "drive_sync_url": DRIVE_SYNC_URL,
    "voice_enroll_url": VOICE_ENROLL_URL,
    "standardize_utterances_url": STANDARDIZE_UTTERANCES_URL,
    "recordings_bucket": RECORDINGS_BUCKET,
    "bigquery_dataset_id": BIGQUERY_DATASET,
}
