import enum
import logging
import os

from waydroid_tools import run
from waydroid_tools.errors import HelperSetupError
from waydroid_tools.log import success


class HelperCommand(enum.Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"
    HACK = "hack"
    CERTIFIED = "certified"


class AppToken(enum.Enum):
    GAPPS = "gapps"
    MICROG = "microg"
    LIBNDK = "libndk"
    LIBHOUDINI = "libhoudini"
    MAGISK = "magisk"
    WIDEVINE = "widevine"
    SMARTDOCK = "smartdock"
    FDROIDPRIV = "fdroidpriv"
    NODATAPERM = "nodataperm"
    HIDESTATUSBAR = "hidestatusbar"
    MITM = "mitm"


APP_DESCRIPTIONS = {
    AppToken.GAPPS: "Google Apps",
    AppToken.MICROG: "MicroG (open source Google services)",
    AppToken.LIBNDK: "ARM translation for AMD CPUs",
    AppToken.LIBHOUDINI: "ARM translation for Intel CPUs",
    AppToken.MAGISK: "Magisk Delta for root",
    AppToken.WIDEVINE: "Widevine DRM L3",
    AppToken.SMARTDOCK: "Desktop mode launcher",
    AppToken.FDROIDPRIV: "FDroid Privileged Extension",
    AppToken.NODATAPERM: "NoDataPerm hack (Android 11 only)",
    AppToken.HIDESTATUSBAR: "Hide status bar hack (Android 11 only)",
    AppToken.MITM: "MITM CA certificate (requires certificate file)",
}

HACK_TOKENS = [AppToken.NODATAPERM, AppToken.HIDESTATUSBAR]


class HelperBridge:
    """Local checkout of waydroid_script running in its own virtualenv.

    Arguments are handed to the helper untouched; it alone decides which
    app names it accepts.
    """

    def __init__(self, script_dir, repo_url, confirm=None, python="python3"):
        self.script_dir = script_dir
        self.repo_url = repo_url
        self.confirm = confirm
        self.python = python

    @property
    def venv_python(self):
        return os.path.join(self.script_dir, "venv", "bin", "python3")

    @property
    def main_py(self):
        return os.path.join(self.script_dir, "main.py")

    def is_present(self):
        return os.path.isfile(self.main_py) and os.path.isfile(self.venv_python)

    def _check(self, step, command, cwd=None):
        logging.info(step)
        code = run.stream(command, cwd=cwd)
        if code != 0:
            raise HelperSetupError(step, returncode=code)

    def ensure_present(self, update=None):
        """Clone or update the helper and install its requirements.

        ``update`` None asks the operator before pulling an existing
        checkout. Raises HelperSetupError on the first failing step.
        """
        if os.path.isdir(self.script_dir):
            logging.info("waydroid_script directory already exists")
            if update is None:
                update = bool(self.confirm and self.confirm("Update it?"))
            if update:
                self._check("Updating waydroid_script repository",
                            ["git", "-C", self.script_dir, "pull"])
        else:
            os.makedirs(os.path.dirname(self.script_dir) or ".", exist_ok=True)
            self._check("Cloning waydroid_script repository",
                        ["git", "clone", self.repo_url, self.script_dir])
        if not os.path.isdir(os.path.join(self.script_dir, "venv")):
            self._check("Creating Python virtual environment",
                        [self.python, "-m", "venv", "venv"],
                        cwd=self.script_dir)
        self._check("Upgrading pip",
                    [self.venv_python, "-m", "pip", "install", "--upgrade",
                     "pip"], cwd=self.script_dir)
        self._check("Installing Python requirements",
                    [self.venv_python, "-m", "pip", "install", "-r",
                     "requirements.txt"], cwd=self.script_dir)
        success("waydroid_script setup complete")

    def run(self, subcommand, args=()):
        subcommand = HelperCommand(subcommand)
        if not os.path.isfile(self.venv_python):
            logging.warning("Python virtual environment not found. "
                            "Setting up waydroid_script first...")
            self.ensure_present(update=False)
        if not os.path.isfile(self.main_py):
            logging.warning("main.py is missing, run setup first")
            raise HelperSetupError(
                "Locating waydroid_script in %s" % self.script_dir)
        command = [self.venv_python, self.main_py, subcommand.value]
        command.extend(args)
        logging.info("Running: %s" % " ".join(command))
        return run.stream(command, cwd=self.script_dir)
