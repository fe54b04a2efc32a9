import enum
import logging
import os
import re
import shutil
import tempfile

from waydroid_tools import probe
from waydroid_tools import run
from waydroid_tools.errors import CommandFailedError
from waydroid_tools.log import success
from waydroid_tools.packages import binder_packages, header_hints

MODULE = probe.BINDER_MODULE
# Older packages ship the module under its dashed name.
MODULE_NAMES = [MODULE, "binder-linux"]
FSTAB = "/etc/fstab"
MODULES_LOAD = "/etc/modules-load.d/waydroid.conf"
FSTAB_ENTRY = "binder %s binder nofail 0 0"


class LoadOutcome(enum.Enum):
    LOADED = "loaded"
    BUSY = "busy"
    BUILTIN = "builtin"
    FAILED = "failed"


# How a failed modprobe is read:
#   "Device or resource busy" -> the driver is compiled into the kernel and
#       owns the device already; only binderfs needs mounting.
#   "not found" while binderfs is registered in /proc/filesystems -> built-in
#       driver with no loadable module; mount binderfs.
#   anything else -> no usable driver; build the module with DKMS.
BUSY_MARKERS = ("device or resource busy", "resource busy")
NOT_FOUND_MARKERS = ("not found",)


def classify_load_failure(result, state):
    text = result.output.lower()
    if any(marker in text for marker in BUSY_MARKERS):
        return LoadOutcome.BUSY
    if (state is probe.BinderState.AVAILABLE_NOT_LOADED
            and any(marker in text for marker in NOT_FOUND_MARKERS)):
        return LoadOutcome.BUILTIN
    return LoadOutcome.FAILED


def dkms_version(status_output, module=MODULE):
    # "binder_linux/1.0, 6.8.1-zen1, x86_64: installed" (dkms 3)
    # "binder_linux, 1.0, 6.8.1-zen1, x86_64: installed" (dkms 2)
    match = re.search(r"^%s[/,]\s*([^,:\s]+)" % re.escape(module),
                      status_output, re.MULTILINE)
    return match.group(1) if match else None


def _read_lines(path):
    try:
        with open(path, "r") as handle:
            return handle.read().splitlines()
    except FileNotFoundError:
        return []


def _write_lines(path, lines):
    directory = os.path.dirname(path) or "."
    handle = tempfile.NamedTemporaryFile(
        "w", dir=directory, prefix=".waydroid-manager-", delete=False)
    with handle:
        handle.write("\n".join(lines) + "\n")
    if os.path.exists(path):
        shutil.copymode(path, handle.name)
    else:
        os.chmod(handle.name, 0o644)
    os.replace(handle.name, path)


def register_binderfs_fstab(fstab=FSTAB, mountpoint=probe.BINDERFS_DIR):
    """Make ``fstab`` end with exactly one canonical binderfs line.

    Lines mounting on ``mountpoint`` or using fs type ``binder`` are dropped
    first. Returns False when the file already had the canonical form.
    """
    entry = FSTAB_ENTRY % mountpoint
    lines = _read_lines(fstab)
    kept = []
    for line in lines:
        fields = line.split()
        if (len(fields) >= 3 and not fields[0].startswith("#")
                and (fields[1] == mountpoint or fields[2] == "binder")):
            continue
        kept.append(line)
    kept.append(entry)
    if kept == lines:
        return False
    _write_lines(fstab, kept)
    return True


def register_module_autoload(path=MODULES_LOAD, module=MODULE):
    lines = _read_lines(path)
    if module in (line.strip() for line in lines):
        return False
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _write_lines(path, lines + [module])
    return True


class BinderProvisioner:

    def __init__(self, host, session, installer, confirm=None,
                 fstab=FSTAB, modules_load=MODULES_LOAD,
                 binderfs_dir=probe.BINDERFS_DIR,
                 state=probe.binder_state,
                 secure_boot=probe.is_secure_boot_enabled):
        self.host = host
        self.session = session
        self.installer = installer
        self.confirm = confirm
        self.fstab = fstab
        self.modules_load = modules_load
        self.binderfs_dir = binderfs_dir
        self.state = state
        self.secure_boot = secure_boot

    def _confirm(self, question):
        return bool(self.confirm and self.confirm(question))

    def check_secure_boot(self):
        enabled = self.session.is_secure_boot_enabled
        while enabled:
            logging.warning(
                "Secure Boot is enabled: unsigned kernel modules such as "
                "%s cannot be loaded" % MODULE)
            if self._confirm("Continue anyway? (loading the module will likely fail)"):
                return True
            if not self._confirm(
                    "Disable Secure Boot in your firmware settings, "
                    "then re-check?"):
                logging.error("Binder setup aborted: Secure Boot is enabled")
                return False
            enabled = self.secure_boot()
        return True

    def load(self, state):
        logging.info("Loading binder module")
        for name in MODULE_NAMES:
            result = run.run(["modprobe", name])
            if result.ok:
                return LoadOutcome.LOADED
            outcome = classify_load_failure(result, state)
            logging.debug("modprobe %s: %s (%s)" %
                          (name, result.output, outcome.value))
            if outcome is not LoadOutcome.FAILED:
                return outcome
        return outcome

    def mount_binderfs(self):
        os.makedirs(self.binderfs_dir, exist_ok=True)
        if not probe.is_binderfs_mounted():
            result = run.run(
                ["mount", "-t", "binder", "binder", self.binderfs_dir])
            if not result.ok:
                raise CommandFailedError("Mounting binderfs", result)
        if register_binderfs_fstab(self.fstab, self.binderfs_dir):
            logging.info("Registered binderfs in %s" % self.fstab)

    def build_module(self):
        kernel = self.host.kernel_version
        logging.info("Installing kernel headers and %s for kernel %s "
                     "(flavor: %s)" % (MODULE, kernel,
                                       self.host.kernel_flavor.value))
        self.installer.install(binder_packages(self.host))
        status = run.run(["dkms", "status", MODULE])
        version = dkms_version(status.stdout) if status.ok else None
        if version:
            command = ["dkms", "install", "%s/%s" % (MODULE, version),
                       "-k", kernel]
        else:
            command = ["dkms", "autoinstall", "-k", kernel]
        logging.info("Building %s with DKMS" % MODULE)
        code = run.stream(command)
        if code != 0:
            raise CommandFailedError(" ".join(command), returncode=code)
        result = run.run(["depmod", "-a"])
        if not result.ok:
            raise CommandFailedError("depmod -a", result)

    def persist_module(self):
        if register_module_autoload(self.modules_load):
            logging.info("%s will be loaded at boot (%s)" %
                         (MODULE, self.modules_load))

    def ensure(self):
        logging.info("Checking binder module")
        state = self.state()
        if state is probe.BinderState.WORKING:
            success("Binder is available")
            return True
        logging.warning("Binder is not available (%s)" % state.value)
        # Built-in driver: Secure Boot only matters if a module must be built.
        if (state is not probe.BinderState.AVAILABLE_NOT_LOADED
                and not self.check_secure_boot()):
            return False
        try:
            outcome = self.load(state)
            if outcome in (LoadOutcome.BUSY, LoadOutcome.BUILTIN):
                logging.info("Binder is built into the kernel, mounting binderfs")
                self.mount_binderfs()
                success("binderfs mounted on %s" % self.binderfs_dir)
                return True
            if outcome is LoadOutcome.FAILED:
                if (state is probe.BinderState.AVAILABLE_NOT_LOADED
                        and not self.check_secure_boot()):
                    return False
                logging.warning("Failed to load %s, installing headers and "
                                "building the module" % MODULE)
                self.build_module()
                outcome = self.load(state)
            if outcome is LoadOutcome.LOADED:
                self.persist_module()
                success("Binder module loaded successfully")
                return True
            logging.error("Failed to load %s after building it" % MODULE)
        except CommandFailedError as exc:
            logging.error(str(exc))
        except OSError as exc:
            logging.error("Binder setup failed: %s" % exc)
        self.print_troubleshooting()
        return False

    def print_troubleshooting(self):
        print("")
        print("===== TROUBLESHOOTING =====")
        print("Your current kernel: %s" % self.host.kernel_version)
        print("Detected kernel flavor: %s" % self.host.kernel_flavor.value)
        print("")
        for hint in header_hints(self.host):
            print("  %s" % hint)
        print("")
        print("If the module still fails to load:")
        print("  1. Reboot so the module matches the running kernel: sudo reboot")
        print("  2. Check that Secure Boot is disabled: mokutil --sb-state")
        print("  3. Look for binder errors in the kernel log: sudo dmesg | grep -i binder")
        print("===========================")
