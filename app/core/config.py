"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    PIPELINE_DEFINITION   — Path to the YAML pipeline definition (default: pipelines/default.yml)
    WORKSPACE_ROOT        — Parent directory for per-run workspaces
    SECRETS_DIR           — Optional directory of mounted secret files (one file per secret)
    E2E_RUNNER_URL        — Base URL of the external end-to-end test runner
    VERSION_COMMAND       — Command printing the next semantic version on stdout
    DEPLOY_CONFIG_REPO    — Git URL of the deployment-configuration repository
    NOTIFY_WEBHOOK_URL    — Endpoint of the notification relay
    NOTIFY_RECIPIENT      — Fixed recipient of run notifications
    PUBLIC_BASE_URL       — Base URL used to build links back to a run
    WEBHOOK_SECRET        — Shared secret for X-Hub-Signature-256 verification
    BUILD_NUMBER_START    — First build number handed out after start-up (default: 1)

Secrets:
    Secret values (registry credentials, git token) are NOT read here.
    They are resolved once per run by the SecretResolver so a run either
    sees all of them or none.

Timeout Philosophy:
    DEFAULT_ACTION_TIMEOUT applies to any guarded action that does not
    declare its own timeout in the pipeline definition. 0 disables it.
"""
import os
from dotenv import load_dotenv

load_dotenv()

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

PIPELINE_DEFINITION = os.getenv(
    "PIPELINE_DEFINITION", os.path.join(_BASE_DIR, "pipelines", "default.yml")
)
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.join(_BASE_DIR, "workspace"))
SECRETS_DIR = os.getenv("SECRETS_DIR", "")

# Registry layout: <account>.dkr.ecr.<region>.amazonaws.com/<segment>/<path>
REGISTRY_HOST_TEMPLATE = os.getenv(
    "REGISTRY_HOST_TEMPLATE", "{account_id}.dkr.ecr.{region}.amazonaws.com"
)
REGISTRY_PATH_SEGMENT = os.getenv("REGISTRY_PATH_SEGMENT", "platform")
STAGING_REGISTRY_PATH = os.getenv("STAGING_REGISTRY_PATH", "staging")
PRODUCTION_REGISTRY_PATH = os.getenv("PRODUCTION_REGISTRY_PATH", "production")

# Names every run resolves before its first stage. Secrets are masked in logs.
REQUIRED_SECRETS: list[str] = [
    name.strip()
    for name in os.getenv("REQUIRED_SECRETS", "REGISTRY_USERNAME,REGISTRY_PASSWORD,GIT_TOKEN").split(",")
    if name.strip()
]
REQUIRED_VARIABLES: list[str] = [
    name.strip()
    for name in os.getenv("REQUIRED_VARIABLES", "AWS_ACCOUNT_ID,AWS_REGION").split(",")
    if name.strip()
]

# Source checkout
SOURCE_REPO_URL = os.getenv("SOURCE_REPO_URL", "")
UNIT_TEST_IMAGE = os.getenv("UNIT_TEST_IMAGE", "python:3.11-slim")
UNIT_TEST_COMMAND = os.getenv(
    "UNIT_TEST_COMMAND",
    "pip install -q -r requirements.txt && pytest --junitxml=reports/unit.xml",
)

# External end-to-end test runner
E2E_RUNNER_URL = os.getenv("E2E_RUNNER_URL", "http://localhost:9000")
E2E_POLL_TIMEOUT = int(os.getenv("E2E_POLL_TIMEOUT", 1800))

# Version resolver
VERSION_COMMAND = os.getenv("VERSION_COMMAND", "npx semantic-release --dry-run --print-version")

# Deployment-configuration repository
DEPLOY_CONFIG_REPO = os.getenv("DEPLOY_CONFIG_REPO", "")
DEPLOY_CONFIG_BRANCH = os.getenv("DEPLOY_CONFIG_BRANCH", "main")
DEPLOY_CONFIG_FILE = os.getenv("DEPLOY_CONFIG_FILE", "values.yaml")
DEPLOY_CONFIG_BLOCK = os.getenv("DEPLOY_CONFIG_BLOCK", "backend")
DEPLOY_CONFIG_FIELD = os.getenv("DEPLOY_CONFIG_FIELD", "tag")
GIT_AUTHOR_NAME = os.getenv("GIT_AUTHOR_NAME", "delivery-pipeline")
GIT_AUTHOR_EMAIL = os.getenv("GIT_AUTHOR_EMAIL", "delivery-pipeline@localhost")

# Notification
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
NOTIFY_RECIPIENT = os.getenv("NOTIFY_RECIPIENT", "devops@example.com")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

# Inbound webhook
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")

# Run registry
BUILD_NUMBER_START = int(os.getenv("BUILD_NUMBER_START", 1))

# Guarded action defaults (seconds)
DEFAULT_ACTION_TIMEOUT = float(os.getenv("DEFAULT_ACTION_TIMEOUT", 0))
DEFAULT_RETRY_DELAY = float(os.getenv("DEFAULT_RETRY_DELAY", 0))
