"""Constants shared across the provisioning modules."""

from __future__ import annotations

PRODUCT_NAME = "nonodo"
GITHUB_REPO = "Calindra/nonodo"
RELEASE_BASE_URL = f"https://github.com/{GITHUB_REPO}/releases/download"
TAGS_API_URL = f"https://api.github.com/repos/{GITHUB_REPO}/tags"
PINNED_VERSION = "2.1.1-beta"

HASH_ALGORITHM = "md5"

SUPPORTED_PLATFORMS = frozenset(
    {
        "darwin-amd64",
        "darwin-arm64",
        "linux-amd64",
        "linux-arm64",
        "windows-amd64",
    }
)

TAR_ARCHIVE_EXTENSION = ".tar.gz"
ZIP_ARCHIVE_EXTENSION = ".zip"
WINDOWS_EXECUTABLE_EXTENSION = ".exe"

# Name of the executable inside the release archives.
TAR_ENTRY_NAME = PRODUCT_NAME
ZIP_ENTRY_NAME = f"{PRODUCT_NAME}{WINDOWS_EXECUTABLE_EXTENSION}"

TAR_BLOCK_SIZE = 512
TAR_NAME_FIELD = slice(0, 100)
TAR_SIZE_FIELD = slice(124, 136)

MAX_ARCHIVE_TOTAL_BYTES = 500 * 1024 * 1024  # 500 MiB
MAX_ARCHIVE_FILE_SIZE = 250 * 1024 * 1024  # 250 MiB per file
MAX_COMPRESSION_RATIO = 100  # Uncompressed vs compressed bytes

MAX_REDIRECTS = 10
DOWNLOAD_CHUNK_SIZE = 64 * 1024
REQUEST_TIMEOUT_SECONDS = 30.0

LEDGER_FILENAME = ".nonodorc.json"

INSTALL_DIR_ENV = "PACKAGE_NONODO_DIR"
CONFIG_DIR_ENV = "BRUNODO_CONFIG_DIR"
HOME_ENV = "BRUNODO_HOME"
