# ABOUTME: Fixed logical paths of headers and content inside an archive group
# ABOUTME: Maps root, binary and binary-description resources to their files

HEADER_DIR = ".fcrepo/"
ROOT_HEADER_FILE = "fcr-root.json"
CONTAINER_CONTENT_FILE = "fcr-container.nt"
DESCRIPTION_SUFFIX = "~fcr-desc"
RDF_EXTENSION = ".nt"
HEADER_EXTENSION = ".json"


def root_header_path() -> str:
    return HEADER_DIR + ROOT_HEADER_FILE


def root_content_path() -> str:
    return CONTAINER_CONTENT_FILE


def binary_header_path(name: str) -> str:
    return f"{HEADER_DIR}{name}{HEADER_EXTENSION}"


def binary_content_path(name: str) -> str:
    return name


def description_header_path(name: str) -> str:
    return f"{HEADER_DIR}{name}{DESCRIPTION_SUFFIX}{HEADER_EXTENSION}"


def description_content_path(name: str) -> str:
    return f"{name}{DESCRIPTION_SUFFIX}{RDF_EXTENSION}"


def is_header_path(path: str) -> bool:
    return path.startswith(HEADER_DIR)
