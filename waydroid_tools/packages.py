import enum
import logging

from waydroid_tools import run
from waydroid_tools.errors import CommandFailedError
from waydroid_tools.log import success
from waydroid_tools.probe import KernelFlavor

BINDER_DKMS = "binder_linux-dkms"


class DistroFamily(enum.Enum):
    ARCH = "arch"
    DEBIAN = "debian"
    FEDORA = "fedora"
    OPENSUSE = "opensuse"


FAMILIES = {
    DistroFamily.ARCH: ["arch", "manjaro", "endeavouros", "cachyos", "garuda"],
    DistroFamily.DEBIAN: ["debian", "ubuntu", "linuxmint", "pop"],
    DistroFamily.FEDORA: ["fedora", "rhel", "centos", "rocky"],
    DistroFamily.OPENSUSE: [],
}

INSTALL_COMMANDS = {
    DistroFamily.ARCH: ["pacman", "-S", "--needed", "--noconfirm"],
    DistroFamily.DEBIAN: ["apt", "install", "-y"],
    DistroFamily.FEDORA: ["dnf", "install", "-y"],
    DistroFamily.OPENSUSE: ["zypper", "--non-interactive", "install"],
}

REFRESH_COMMANDS = {
    DistroFamily.DEBIAN: ["apt", "update"],
}

UPGRADE_COMMANDS = {
    DistroFamily.ARCH: ["pacman", "-Syu", "--noconfirm"],
    DistroFamily.DEBIAN: ["apt", "update"],
}

BASE_PACKAGES = {
    DistroFamily.ARCH: ["lzip", "git", "python", "python-pip",
                        "python-virtualenv", "waydroid", "weston", "ufw"],
    DistroFamily.DEBIAN: ["lzip", "git", "python3", "python3-pip",
                          "python3-venv", "waydroid", "weston", "ufw"],
    DistroFamily.FEDORA: ["lzip", "git", "python3", "python3-pip",
                          "python3-virtualenv", "waydroid", "weston"],
    DistroFamily.OPENSUSE: ["lzip", "git", "python3", "python3-pip",
                            "python3-virtualenv", "waydroid", "weston"],
}

ARCH_HEADERS = {
    KernelFlavor.ZEN: "linux-zen-headers",
    KernelFlavor.LTS: "linux-lts-headers",
    KernelFlavor.HARDENED: "linux-hardened-headers",
    KernelFlavor.CACHYOS: "linux-cachyos-headers",
}


def distro_family(distro_id):
    for family, ids in FAMILIES.items():
        if distro_id in ids:
            return family
    if distro_id.startswith("opensuse"):
        return DistroFamily.OPENSUSE
    return None


def pacman_has(package):
    return run.run(["pacman", "-Q", package]).ok


def arch_headers_package(flavor, has_package=pacman_has):
    if flavor in ARCH_HEADERS:
        return ARCH_HEADERS[flavor]
    if has_package("linux-headers"):
        return "linux-headers"
    # Custom kernel string: go by whichever kernel is installed.
    for kernel in ("linux-zen", "linux-lts", "linux-hardened"):
        if has_package(kernel):
            return "%s-headers" % kernel
    return "linux-headers"


def binder_packages(host, has_package=pacman_has):
    family = distro_family(host.distro_id)
    release = host.kernel_version
    if family is DistroFamily.ARCH:
        return [arch_headers_package(host.kernel_flavor, has_package),
                BINDER_DKMS]
    if family is DistroFamily.DEBIAN:
        return ["linux-headers-%s" % release, BINDER_DKMS]
    if family is DistroFamily.FEDORA:
        return ["kernel-devel-%s" % release,
                "kernel-headers-%s" % release, BINDER_DKMS]
    if family is DistroFamily.OPENSUSE:
        return ["kernel-devel", "kernel-default-devel", BINDER_DKMS]
    return []


def header_hints(host):
    """Manual commands for installing headers and the binder module."""
    family = distro_family(host.distro_id)
    release = host.kernel_version
    if family is DistroFamily.ARCH:
        return [
            "For linux-zen kernel:  sudo pacman -S linux-zen-headers",
            "For linux-lts kernel:  sudo pacman -S linux-lts-headers",
            "For linux-hardened:    sudo pacman -S linux-hardened-headers",
            "For default kernel:    sudo pacman -S linux-headers",
            "Then: sudo pacman -S %s && sudo modprobe binder_linux" %
            BINDER_DKMS,
        ]
    if family is DistroFamily.DEBIAN:
        return [
            "sudo apt update",
            "sudo apt install linux-headers-%s %s" % (release, BINDER_DKMS),
            "sudo modprobe binder_linux",
        ]
    if family is DistroFamily.FEDORA:
        return [
            "sudo dnf install kernel-devel-%s kernel-headers-%s %s" %
            (release, release, BINDER_DKMS),
            "sudo modprobe binder_linux",
        ]
    return [
        "Install the binder_linux module for your kernel: %s" % release,
        "Then run: sudo modprobe binder_linux",
    ]


class PackageInstaller:

    def __init__(self, host, confirm=None):
        self.host = host
        self.confirm = confirm
        self.family = distro_family(host.distro_id)

    @property
    def supported(self):
        return self.family is not None

    def install(self, packages, upgrade=False):
        if not self.supported:
            raise CommandFailedError(
                "Package installation on unknown distribution '%s'" %
                self.host.distro_id)
        prepare = (UPGRADE_COMMANDS if upgrade else REFRESH_COMMANDS).get(
            self.family)
        if prepare:
            logging.info("Refreshing package databases")
            code = run.stream(prepare)
            if code != 0:
                raise CommandFailedError(" ".join(prepare), returncode=code)
        command = INSTALL_COMMANDS[self.family] + list(packages)
        logging.info("Installing: %s" % " ".join(packages))
        code = run.stream(command)
        if code != 0:
            raise CommandFailedError(
                "Installing %s" % " ".join(packages), returncode=code)

    def install_dependencies(self, upgrade=False):
        logging.info("Installing dependencies for %s" % self.host.distro_id)
        if not self.supported:
            logging.warning(
                "Unknown distribution. Please install lzip, git, python3, "
                "python3-pip, waydroid and weston manually")
            return bool(self.confirm and self.confirm("Continue anyway?"))
        self.install(BASE_PACKAGES[self.family], upgrade=upgrade)
        success("Dependencies installed")
        return True
