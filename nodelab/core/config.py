# nodelab/core/config.py
import os

from .exceptions import ConfigError

TRUTHY = {"1", "true", "yes", "on"}


def _env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def _env_int(name: str, default: int, min_val: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigError(f"{name} must be >= {min_val} (got {value})")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got '{raw}')")
    if value < 0:
        raise ConfigError(f"{name} must not be negative (got {value})")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY


# --- Storage ---
BASE_IMAGE_PATH = _env("NODELAB_BASE_IMAGE", "/app/images/base.qcow2")
OVERLAY_DIR = _env("NODELAB_OVERLAY_DIR", "/app/overlays")
QEMU_IMG_BINARY = _env("NODELAB_QEMU_IMG", "qemu-img")

# --- VM Configuration ---
QEMU_BINARY = _env("NODELAB_QEMU", "qemu-system-x86_64")
VM_MEMORY_MB = _env_int("NODELAB_VM_MEMORY_MB", 512, min_val=64)
VM_ENABLE_KVM = _env_bool("NODELAB_VM_ENABLE_KVM", True)
VNC_BASE_PORT = _env_int("NODELAB_VNC_BASE_PORT", 5900, min_val=1)  # display :0
VNC_READY_TIMEOUT = _env_float("NODELAB_VNC_READY_TIMEOUT", 10.0)
VNC_PROBE_INTERVAL = _env_float("NODELAB_VNC_PROBE_INTERVAL", 0.5)
STOP_GRACE_SECONDS = _env_float("NODELAB_STOP_GRACE_SECONDS", 1.0)
STOP_NODES_ON_SHUTDOWN = _env_bool("NODELAB_STOP_NODES_ON_SHUTDOWN", True)

# --- Guacamole Configuration ---
GUACAMOLE_URL = _env("GUACAMOLE_URL", "http://guacamole:8080/guacamole")
# Address the browser uses to reach Guacamole, which differs from the API
# address when the controller talks to it over a container network.
GUAC_PUBLIC_URL = _env("GUAC_PUBLIC_URL", "http://localhost:8080/guacamole")
GUAC_USERNAME = _env("GUAC_USERNAME", "guacadmin")
GUAC_PASSWORD = _env("GUAC_PASSWORD", "guacadmin")
GUAC_DATA_SOURCE = _env("GUAC_DATA_SOURCE", "postgresql")
GUAC_VNC_HOST = _env("GUAC_VNC_HOST", "host.docker.internal")
GUAC_HTTP_TIMEOUT = _env_float("GUAC_HTTP_TIMEOUT", 5.0)
GUAC_AUTH_ATTEMPTS = _env_int("GUAC_AUTH_ATTEMPTS", 2, min_val=1)
GUAC_AUTH_RETRY_DELAY = _env_float("GUAC_AUTH_RETRY_DELAY", 2.0)
# Console URLs carry the admin credentials when enabled. Anyone holding such a
# URL can log in to Guacamole as the administrator.
GUAC_EMBED_CREDENTIALS = _env_bool("GUAC_EMBED_CREDENTIALS", True)

# --- API ---
CORS_ORIGINS = [
    origin.strip()
    for origin in _env("NODELAB_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
HOST = _env("NODELAB_HOST", "0.0.0.0")
PORT = _env_int("NODELAB_PORT", 8000, min_val=1)
LOG_LEVEL = _env("NODELAB_LOG_LEVEL", "INFO").upper()
