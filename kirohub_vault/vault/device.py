"""
Device identifier — the stable per-machine input to key derivation.

Security Note:
    The machine id is key material in all but name. Never log it.
"""
import os
import sys
import uuid
import hashlib
import logging
import platform
import subprocess
from pathlib import Path

logger = logging.getLogger("kirohub.vault")

_LINUX_ID_FILES = (
    Path("/etc/machine-id"),
    Path("/var/lib/dbus/machine-id"),
)


def _linux_machine_id() -> str | None:
    for path in _LINUX_ID_FILES:
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _darwin_machine_id() -> str | None:
    try:
        result = subprocess.run(
            ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as err:
        logger.debug("ioreg unavailable: %s", err)
        return None
    for line in result.stdout.splitlines():
        if "IOPlatformUUID" in line:
            return line.split('"')[-2]
    return None


def _windows_machine_id() -> str | None:
    import winreg  # pylint: disable=import-outside-toplevel,import-error

    try:
        with winreg.OpenKey(
            winreg.HKEY_LOCAL_MACHINE,
            r"SOFTWARE\Microsoft\Cryptography",
            0,
            winreg.KEY_READ | winreg.KEY_WOW64_64KEY,
        ) as key:
            value, _ = winreg.QueryValueEx(key, "MachineGuid")
    except OSError as err:
        logger.debug("MachineGuid unavailable: %s", err)
        return None
    return str(value)


def _fingerprint() -> str:
    """Last-resort identifier from hostname and MAC address."""
    data = f"{platform.node()}|{uuid.getnode():012x}".encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def get_machine_id() -> str:
    """Return a stable identifier for the running machine.

    Lookup order: ``KIROHUB_MACHINE_ID`` env var, then the platform's native
    machine id, then a hostname/MAC fingerprint.
    """
    override = os.environ.get("KIROHUB_MACHINE_ID")
    if override:
        return override
    if sys.platform == "win32":
        machine_id = _windows_machine_id()
    elif sys.platform == "darwin":
        machine_id = _darwin_machine_id()
    else:
        machine_id = _linux_machine_id()
    if machine_id:
        return machine_id
    logger.warning("No native machine id found; using host fingerprint")
    return _fingerprint()
