"""Read-only queries about the host.

Nothing here changes system state. File locations are keyword arguments so
the queries can be pointed at fixture files.
"""

import collections
import enum
import glob
import logging
import os
import platform
import pwd
import re

from waydroid_tools import run
from waydroid_tools.platform_tools import get_machine

WITH_DBUS = True

try:
    import dbus
except ImportError:
    WITH_DBUS = False

OS_RELEASE = "/etc/os-release"
PROC_MODULES = "/proc/modules"
PROC_MOUNTS = "/proc/mounts"
PROC_FILESYSTEMS = "/proc/filesystems"
RUNTIME_ROOT = "/run/user"

BINDER_MODULE = "binder_linux"
BINDERFS_DIR = "/dev/binderfs"
BINDER_DEVICES = ["/dev/binder", "/dev/binderfs/binder", "/dev/anbox-binder"]

WAYDROID_IMAGES = "/var/lib/waydroid/images"


class KernelFlavor(enum.Enum):
    ZEN = "zen"
    LTS = "lts"
    HARDENED = "hardened"
    CACHYOS = "cachyos"
    DEFAULT = "default"


# Checked in this order; the first suffix found wins.
FLAVOR_SUFFIXES = [
    ("-zen", KernelFlavor.ZEN),
    ("-lts", KernelFlavor.LTS),
    ("-hardened", KernelFlavor.HARDENED),
    ("-cachyos", KernelFlavor.CACHYOS),
]


class BinderState(enum.Enum):
    WORKING = "working"
    AVAILABLE_NOT_LOADED = "available-not-loaded"
    UNAVAILABLE = "unavailable"


class FirewallBackend(enum.Enum):
    UFW = "ufw"
    NFT = "nft"
    IPTABLES = "iptables"


FIREWALL_PRIORITY = [FirewallBackend.UFW, FirewallBackend.NFT,
                     FirewallBackend.IPTABLES]

HostProfile = collections.namedtuple(
    "HostProfile", ["distro_id", "kernel_version", "kernel_flavor", "arch"])

SessionContext = collections.namedtuple(
    "SessionContext", ["is_root", "invoking_user", "invoking_uid",
                       "is_wayland_active", "is_secure_boot_enabled"])


def _read(path):
    try:
        with open(path, "r") as handle:
            return handle.read()
    except OSError:
        return None


# Host

def detect_distro(os_release=OS_RELEASE):
    content = _read(os_release)
    if content is None:
        return "unknown"
    for line in content.splitlines():
        if line.startswith("ID="):
            value = line.split("=", 1)[1].strip().strip("\"'").lower()
            return value or "unknown"
    return "unknown"


def kernel_version():
    return platform.release()


def detect_kernel_flavor(release=None):
    release = release if release is not None else kernel_version()
    for suffix, flavor in FLAVOR_SUFFIXES:
        if suffix in release:
            return flavor
    return KernelFlavor.DEFAULT


def host_profile(os_release=OS_RELEASE):
    release = kernel_version()
    return HostProfile(
        distro_id=detect_distro(os_release),
        kernel_version=release,
        kernel_flavor=detect_kernel_flavor(release),
        arch=get_machine())


# Session

def invoking_user(environ=None):
    """Name and uid of the desktop user behind sudo/pkexec/doas."""
    environ = os.environ if environ is None else environ
    sudo_user = environ.get("SUDO_USER")
    if sudo_user and sudo_user != "root":
        if environ.get("SUDO_UID", "").isdigit():
            return sudo_user, int(environ["SUDO_UID"])
        return _user_by_name(sudo_user)
    if environ.get("PKEXEC_UID", "").isdigit():
        uid = int(environ["PKEXEC_UID"])
        return _user_by_uid(uid), uid
    doas_user = environ.get("DOAS_USER")
    if doas_user and doas_user != "root":
        return _user_by_name(doas_user)
    uid = os.getuid()
    return _user_by_uid(uid), uid


def _user_by_name(name):
    try:
        return name, pwd.getpwnam(name).pw_uid
    except KeyError:
        return name, os.getuid()


def _user_by_uid(uid):
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def wayland_sockets(uid, runtime_root=RUNTIME_ROOT):
    pattern = os.path.join(runtime_root, str(uid), "wayland-*")
    return sorted(os.path.basename(path) for path in glob.glob(pattern)
                  if not path.endswith(".lock"))


def wayland_display(uid, environ=None, runtime_root=RUNTIME_ROOT):
    environ = os.environ if environ is None else environ
    if environ.get("WAYLAND_DISPLAY"):
        return environ["WAYLAND_DISPLAY"]
    sockets = wayland_sockets(uid, runtime_root)
    return sockets[0] if sockets else "wayland-0"


def _logind_session_types_dbus(uid):
    bus = dbus.SystemBus()
    manager = dbus.Interface(
        bus.get_object("org.freedesktop.login1", "/org/freedesktop/login1"),
        "org.freedesktop.login1.Manager")
    types = []
    for _id, session_uid, _user, _seat, path in manager.ListSessions():
        if int(session_uid) != uid:
            continue
        props = dbus.Interface(
            bus.get_object("org.freedesktop.login1", path),
            "org.freedesktop.DBus.Properties")
        types.append(str(props.Get("org.freedesktop.login1.Session", "Type")))
    return types


def _logind_session_types_loginctl(uid):
    result = run.run(["loginctl", "list-sessions", "--no-legend"])
    if not result.ok:
        return []
    types = []
    for line in result.stdout.splitlines():
        fields = line.split()
        if len(fields) < 2 or fields[1] != str(uid):
            continue
        session = run.run(["loginctl", "show-session", fields[0],
                           "-p", "Type", "--value"])
        if session.ok:
            types.append(session.stdout.strip())
    return types


def logind_session_types(uid):
    if WITH_DBUS:
        try:
            return _logind_session_types_dbus(uid)
        except dbus.exceptions.DBusException as exc:
            logging.debug("logind query over D-Bus failed: %s" % exc)
    return _logind_session_types_loginctl(uid)


def is_wayland_active(user, uid, environ=None, runtime_root=RUNTIME_ROOT):
    environ = os.environ if environ is None else environ
    # sudo/pkexec strip WAYLAND_DISPLAY, so look at the user's session first.
    if uid != os.geteuid() and wayland_sockets(uid, runtime_root):
        return True
    if "wayland" in logind_session_types(uid):
        return True
    if environ.get("WAYLAND_DISPLAY"):
        return True
    return environ.get("XDG_SESSION_TYPE") == "wayland"


def is_secure_boot_enabled():
    if not run.command_exists("mokutil"):
        return False
    result = run.run(["mokutil", "--sb-state"])
    return "SecureBoot enabled" in result.output


def resolve_session(environ=None):
    environ = os.environ if environ is None else environ
    user, uid = invoking_user(environ)
    return SessionContext(
        is_root=os.geteuid() == 0,
        invoking_user=user,
        invoking_uid=uid,
        is_wayland_active=is_wayland_active(user, uid, environ),
        is_secure_boot_enabled=is_secure_boot_enabled())


# Binder

def is_module_loaded(name=BINDER_MODULE, modules=PROC_MODULES):
    content = _read(modules) or ""
    return any(line.split()[0] == name
               for line in content.splitlines() if line.strip())


def is_binderfs_mounted(mounts=PROC_MOUNTS):
    content = _read(mounts) or ""
    for line in content.splitlines():
        fields = line.split()
        if len(fields) >= 3 and fields[2] == "binder":
            return True
    return False


def is_binderfs_supported(filesystems=PROC_FILESYSTEMS):
    content = _read(filesystems) or ""
    return any(line.split()[-1] == "binder"
               for line in content.splitlines() if line.strip())


def binder_state(modules=PROC_MODULES, mounts=PROC_MOUNTS,
                 devices=BINDER_DEVICES, filesystems=PROC_FILESYSTEMS,
                 binderfs_dir=BINDERFS_DIR):
    if is_module_loaded(modules=modules):
        return BinderState.WORKING
    if is_binderfs_mounted(mounts):
        return BinderState.WORKING
    if any(os.path.exists(device) for device in devices):
        return BinderState.WORKING
    if is_binderfs_supported(filesystems) and os.path.isdir(binderfs_dir):
        return BinderState.AVAILABLE_NOT_LOADED
    return BinderState.UNAVAILABLE


# Firewall

def detect_firewall_backend():
    for backend in FIREWALL_PRIORITY:
        if run.command_exists(backend.value):
            return backend
    return None


FIREWALL_LIST_COMMANDS = {
    FirewallBackend.UFW: ["ufw", "show", "added"],
    FirewallBackend.NFT: ["nft", "list", "ruleset"],
    FirewallBackend.IPTABLES: ["iptables", "-S", "FORWARD"],
}

# Inbound and outbound forward rules, as each backend lists them.
FIREWALL_RULE_PATTERNS = {
    FirewallBackend.UFW: (r"route allow in on %s$", r"route allow out on %s$"),
    FirewallBackend.NFT: (r'iifname "?%s"?\s.*\baccept',
                          r'oifname "?%s"?\s.*\baccept'),
    FirewallBackend.IPTABLES: (r"-i %s -j ACCEPT", r"-o %s -j ACCEPT"),
}


def forward_rule_status(backend, interface):
    """Presence of the inbound and outbound forward rules, in that order."""
    if backend is None:
        return [False, False]
    result = run.run(FIREWALL_LIST_COMMANDS[backend])
    if not result.ok:
        return [False, False]
    name = re.escape(interface)
    return [re.search(pattern % name, result.stdout, re.MULTILINE) is not None
            for pattern in FIREWALL_RULE_PATTERNS[backend]]


def is_firewall_configured(backend, interface):
    return all(forward_rule_status(backend, interface))


# WayDroid

def WaydroidContainerDbus():
    return dbus.Interface(
        dbus.SystemBus().get_object(
            "id.waydro.Container", "/ContainerManager"),
        "id.waydro.ContainerManager")


def get_waydroid_session():
    if WITH_DBUS:
        try:
            return WaydroidContainerDbus().GetSession()
        except dbus.exceptions.DBusException as exc:
            logging.debug("WayDroid container not reachable: %s" % exc)
    return None


def is_waydroid_installed():
    return run.command_exists("waydroid")


def is_waydroid_initialized(images_dir=WAYDROID_IMAGES):
    return os.path.isdir(images_dir)


def is_container_active(service):
    return run.run(["systemctl", "is-active", "--quiet", service]).ok
