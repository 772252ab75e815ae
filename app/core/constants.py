"""
Constants
Centralised storage for run results, image names and tag keys.
"""
# Run results
PENDING = "pending"
SUCCESS = "success"
FAILURE = "failure"

# Run lifecycle states (results plus the two non-result states)
RUNNING = "running"
FINALIZED = "finalized"

# Stage outcomes
STAGE_SKIPPED = "skipped"
STAGE_PASSED = "passed"
STAGE_FAILED = "failed"

# Stage that owns the semantic_version tag
VERSION_TAG = "version-tag"

# Images produced by every run
IMAGES = ("backend", "frontend", "worker")
LATEST_TAG = "latest"

# Run-scoped tag keys
BUILD_NUMBER = "build_number"
SEMANTIC_VERSION = "semantic_version"

MASK = "****"
DEPLOY_COMMIT_TEMPLATE = "Deploy backend {version} (build #{build_number})"
