# constants shared across uptrack modules

DOCKER_HUB_URL = "https://hub.docker.com"
DOCKER_HUB_API_URL = f"{DOCKER_HUB_URL}/v2"

# Namespace Docker Hub uses for official images; it is omitted from image names
DEFAULT_NAMESPACE = "library"

DEFAULT_CONFIG_PATH = "./uptrack.json"
DEFAULT_LABEL_PREFIX = "com.framjet.uptrack."
DEFAULT_PAGE_SIZE = 100
DEFAULT_CACHE_SIZE = 100
DEFAULT_CONCURRENCY = 8

# Provenance labels written into every downstream image, appended to the label prefix
LABEL_IMAGE_REVISION = "image.revision"
LABEL_UPSTREAM_IMAGE = "upstream.image"
LABEL_UPSTREAM_TAG = "upstream.tag"
LABEL_UPSTREAM_PLATFORMS = "upstream.platforms"
LABEL_UPSTREAM_DIGESTS = "upstream.digests"

# Build args handed to every build, before the configured ones
BUILD_ARG_PREFIX = "UPTRACK_"

TAG_STATUS_ACTIVE = "active"
CONTENT_TYPE_IMAGE = "image"

# Environment variables to disable Git stdin prompts for username, password, etc
GIT_NO_PROMPTS = {
    "GIT_SSH_COMMAND": "ssh -oBatchMode=yes",
    "GIT_TERMINAL_PROMPT": "0",
}
