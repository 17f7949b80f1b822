"""Constants shared across modpm."""

MANIFEST_FILE = "modpm.yml"
LOCK_FILE = "modpm.lock"
VENDOR_DIR = "vendor"

# Source schemes
LOCAL_SCHEME = "file"
GIT_SCHEME = "git"
SSH_SCHEME = "ssh"
HTTP_SCHEME = "http"
HTTPS_SCHEME = "https"
OCI_SCHEME = "oci"
DEFAULT_OCI_SCHEME = "default-oci"

# Query keys of the canonical source string
TAG_KEY = "tag"
COMMIT_KEY = "commit"
BRANCH_KEY = "branch"
MOD_KEY = "mod"
NAME_KEY = "name"
VERSION_KEY = "version"

# Source file extensions
TAR_EXT = ".tar"
TGZ_EXT = ".tgz"
GIT_EXT = ".git"

# Cache partitions
CACHE_SRC_DIR = "src"
CACHE_ARTIFACT_DIR = "cache"

# Version sentinels
NONE_VERSION = "none"
LATEST_TAG = "latest"

# OCI
OCI_SUM_ANNOTATION = "org.modpm.package.sum"
OCI_ARTIFACT_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG_MEDIA_TYPE = "application/vnd.oci.empty.v1+json"
OCI_TITLE_ANNOTATION = "org.opencontainers.image.title"

VIRTUAL_PACKAGE_PREFIX = "vpkg_"
