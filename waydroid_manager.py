#!/usr/bin/env python3

import argparse
import enum
import logging
import os
import pwd
import signal
import sys
import time

from waydroid_tools import lock
from waydroid_tools import probe
from waydroid_tools import prompt
from waydroid_tools import run
from waydroid_tools.binder import BinderProvisioner
from waydroid_tools.config import CERTIFICATION_URL, CONFIG_FILE, Config
from waydroid_tools.errors import (CommandFailedError, ManagerError,
                                   NotRootError, ProvisioningError,
                                   UnknownCommandError)
from waydroid_tools.firewall import FirewallProvisioner
from waydroid_tools.helper import (APP_DESCRIPTIONS, HACK_TOKENS, AppToken,
                                   HelperBridge, HelperCommand)
from waydroid_tools.log import add_log_file, header, setup_logging, success
from waydroid_tools.packages import PackageInstaller
from waydroid_tools.platform_tools import (get_arch,
                                           recommended_translation_layer)

VERSION = "2.1.1"
PROG = "waydroid-manager"


class Command(enum.Enum):
    INSTALL = "install"
    INSTALL_ARCH = "install-arch"
    INSTALL_CMD = "install-cmd"
    INSTALL_DEPS = "install-deps"
    SETUP = "setup"
    CHECK_BINDER = "check-binder"
    UI = "ui"
    MULTI = "multi"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"
    CERTIFIED = "certified"
    REMOVE = "remove"
    UNINSTALL = "uninstall"
    HACK = "hack"
    CLEAN = "clean"
    HELP = "help"


def parse_command(name):
    try:
        return Command(name)
    except ValueError:
        raise UnknownCommandError(name)


def is_root():
    return os.geteuid() == 0


# Manager

class Manager:
    def __init__(self, config, host, session, confirm=prompt.confirm):
        self.config = config
        self.host = host
        self.session = session
        self.confirm = confirm
        self.installer = PackageInstaller(host, confirm)
        self.binder = BinderProvisioner(host, session, self.installer, confirm)
        self.firewall = FirewallProvisioner(config.bridge_interface)
        self.bridge = HelperBridge(
            config.script_dir, config.helper_repo, confirm)

    def check_wayland(self):
        logging.info("Checking display server")
        if self.session.is_wayland_active:
            success("Wayland session detected for %s" %
                    self.session.invoking_user)
            return True
        logging.warning("Wayland not detected. You are likely running X11.")
        print("Waydroid requires a Wayland compositor for optimal performance.")
        print("")
        print("Options:")
        print("  1) Switch to a Wayland session (recommended for your DE)")
        print("  2) Run Weston (nested Wayland compositor): weston")
        print("  3) Continue anyway (may have issues)")
        print("")
        if not self.confirm("Continue anyway?"):
            logging.info("Cancelled")
            return False
        logging.warning("Continuing without Wayland - UI may have issues")
        return True

    def install_waydroid(self):
        header("INSTALLING WAYDROID")
        if not self.check_wayland():
            return False
        if not self.installer.install_dependencies(upgrade=True):
            logging.info("Installation cancelled")
            return False
        if not probe.is_waydroid_installed():
            raise ProvisioningError(
                "waydroid command not found after installing packages")
        if not self.binder.ensure():
            logging.warning("Continuing without binder: Android will not "
                            "start until the binder module is available")
        self.firewall.ensure()
        if not probe.is_waydroid_initialized(self.config.images_dir):
            logging.info("Initializing WayDroid")
            code = run.stream(["waydroid", "init"])
            if code != 0:
                raise CommandFailedError("waydroid init", returncode=code)
        logging.info("Starting WayDroid container service")
        command = ["systemctl", "enable", "--now", self.config.service_name]
        code = run.stream(command)
        if code != 0:
            raise CommandFailedError(" ".join(command), returncode=code)
        success("WayDroid installed successfully")
        self.print_next_steps()
        return True

    def print_next_steps(self):
        print("")
        logging.info("Next steps:")
        print("  1. Run 'sudo %s ui' to start WayDroid in full UI mode" % PROG)
        print("  2. Or run 'sudo %s multi' for multi-window mode" % PROG)
        print("  3. Run 'sudo %s install gapps' to install Google Apps" % PROG)
        layer = recommended_translation_layer(self.host.arch)
        if layer:
            print("  4. For ARM apps on this CPU: sudo %s install %s" %
                  (PROG, layer))
        else:
            print("  4. For ARM apps on x86, install: libndk (AMD) or "
                  "libhoudini (Intel)")
        print("  5. Get Play Store certification: sudo %s certified" % PROG)

    def install_deps(self):
        header("INSTALLING DEPENDENCIES")
        if not self.installer.install_dependencies():
            return False
        self.firewall.ensure()
        return True

    def setup_helper(self, update=None):
        header("SETTING UP WAYDROID SCRIPT")
        self.bridge.ensure_present(update=update)
        return True

    def check_binder(self):
        return self.binder.ensure()

    def desktop_env(self):
        user = self.session.invoking_user
        uid = self.session.invoking_uid
        try:
            home = pwd.getpwuid(uid).pw_dir
        except KeyError:
            home = os.environ.get("HOME", "/")
        runtime_dir = os.path.join(probe.RUNTIME_ROOT, str(uid))
        return {
            "PATH": os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
            "HOME": home,
            "USER": user,
            "LOGNAME": user,
            "XDG_RUNTIME_DIR": runtime_dir,
            "XDG_SESSION_TYPE": "wayland",
            "WAYLAND_DISPLAY": probe.wayland_display(uid),
            "DBUS_SESSION_BUS_ADDRESS": "unix:path=%s/bus" % runtime_dir,
        }

    def launch(self, command):
        """Start ``command`` in the desktop user's session, unsupervised."""
        env = self.desktop_env()
        uid = self.session.invoking_uid
        if os.geteuid() == 0 and uid != 0:
            try:
                entry = pwd.getpwuid(uid)
            except KeyError:
                return run.spawn_detached(command, env=env)
            return run.spawn_detached(
                command, env=env, user=uid, group=entry.pw_gid,
                extra_groups=os.getgrouplist(entry.pw_name, entry.pw_gid))
        return run.spawn_detached(command, env=env)

    def _prepare_ui(self):
        if not self.check_wayland():
            return False
        if not self.binder.ensure():
            logging.warning("Binder is not available; Android may fail to boot")
        return True

    def launch_ui(self):
        logging.info("Starting WayDroid in Full UI mode...")
        if not self._prepare_ui():
            return False
        process = self.launch(["waydroid", "show-full-ui"])
        success("WayDroid UI started (running in background, pid %s)" %
                process.pid)
        return True

    def launch_multi(self):
        logging.info("Starting WayDroid in Multi-window mode...")
        logging.info("This will make Android apps appear as native Linux windows")
        if not self._prepare_ui():
            return False
        self.launch(["waydroid", "session", "start"])
        time.sleep(self.config.launch_delay)
        result = run.run(["waydroid", "prop", "set",
                          "persist.waydroid.multi_windows", "true"])
        if not result.ok:
            logging.warning("Could not enable multi-window mode: %s" %
                            result.output)
        self.launch(["waydroid", "show-full-ui"])
        success("WayDroid multi-window mode started")
        return True

    def service(self, action):
        if action == "start":
            self.binder.ensure()
        command = ["systemctl", action, self.config.service_name]
        code = run.stream(command)
        if action == "status":
            # systemctl reports a stopped unit with 3.
            return code in (0, 3)
        if code != 0:
            raise CommandFailedError(" ".join(command), returncode=code)
        success("WayDroid container %s" % {
            "start": "started", "stop": "stopped",
            "restart": "restarted"}[action])
        return True

    def forward(self, subcommand, args=()):
        code = self.bridge.run(subcommand, list(args))
        if code != 0:
            raise CommandFailedError(
                "waydroid_script %s" % HelperCommand(subcommand).value,
                returncode=code)
        return True

    def certified(self):
        logging.info("Fetching Google Device ID for Play Store certification...")
        self.forward(HelperCommand.CERTIFIED)
        print("")
        logging.info("Copy the ID above and register it at:")
        print(CERTIFICATION_URL)
        return True


COMMANDS = {
    Command.INSTALL: (
        lambda m, args: (m.forward(HelperCommand.INSTALL, args) if args
                         else m.install_waydroid()), True),
    Command.INSTALL_ARCH: (lambda m, args: m.install_waydroid(), True),
    Command.INSTALL_CMD: (
        lambda m, args: m.forward(HelperCommand.INSTALL, args), True),
    Command.INSTALL_DEPS: (lambda m, args: m.install_deps(), True),
    Command.SETUP: (lambda m, args: m.setup_helper(), True),
    Command.CHECK_BINDER: (lambda m, args: m.check_binder(), True),
    Command.UI: (lambda m, args: m.launch_ui(), True),
    Command.MULTI: (lambda m, args: m.launch_multi(), True),
    Command.START: (lambda m, args: m.service("start"), True),
    Command.STOP: (lambda m, args: m.service("stop"), True),
    Command.RESTART: (lambda m, args: m.service("restart"), True),
    Command.STATUS: (lambda m, args: m.service("status"), False),
    Command.CERTIFIED: (lambda m, args: m.certified(), True),
    Command.REMOVE: (
        lambda m, args: m.forward(HelperCommand.UNINSTALL, args), True),
    Command.UNINSTALL: (
        lambda m, args: m.forward(HelperCommand.UNINSTALL, args), True),
    Command.HACK: (lambda m, args: m.forward(HelperCommand.HACK, args), True),
}


# Menu

APP_MENU = list(AppToken)


def parse_selection(text, choices=APP_MENU):
    """Map space separated menu numbers to tokens, in order, without repeats.

    Returns the tokens and the entries that were not valid numbers.
    """
    tokens = []
    invalid = []
    for item in text.split():
        if item.isdigit() and 1 <= int(item) <= len(choices):
            token = choices[int(item) - 1]
            if token not in tokens:
                tokens.append(token)
        else:
            invalid.append(item)
    return tokens, invalid


def clear_screen():
    if sys.stdout.isatty():
        sys.stdout.write("\033[H\033[2J")
        sys.stdout.flush()


def print_app_menu(title, verb):
    clear_screen()
    header(title)
    print("Select apps to %s (enter numbers separated by spaces):" % verb)
    print("")
    for number, token in enumerate(APP_MENU, 1):
        print("%2d) %-13s - %s" % (number, token.value,
                                   APP_DESCRIPTIONS[token]))
    print(" 0) Back to main menu")
    print("")


def _select_apps(title, verb, ask):
    """One round of an app submenu. Returns None when the user goes back."""
    print_app_menu(title, verb)
    selection = ask("Enter selection (e.g., '1 3 5')", default="0")
    if selection == "0":
        return None
    if not selection:
        logging.error("No selection made")
        return []
    tokens, invalid = parse_selection(selection)
    for item in invalid:
        logging.warning("Invalid selection: %s" % item)
    if not tokens:
        logging.warning("No valid apps selected")
    return tokens


def install_apps_menu(manager, ask=prompt.ask, pause=prompt.pause):
    while True:
        tokens = _select_apps("INSTALL APPS MENU", "install", ask)
        if tokens is None:
            return True
        cert_path = None
        if AppToken.MITM in tokens:
            tokens.remove(AppToken.MITM)
            print("")
            cert_path = ask("Enter path to CA certificate file for MITM")
            if not os.path.isfile(cert_path):
                logging.error("Certificate file not found: %s" % cert_path)
                cert_path = None
        try:
            if tokens:
                names = [token.value for token in tokens]
                logging.info("Installing: %s" % " ".join(names))
                manager.forward(HelperCommand.INSTALL, names)
            if cert_path:
                # mitm needs its own run because of --ca-cert
                logging.info("Installing MITM with certificate")
                manager.forward(HelperCommand.INSTALL,
                                [AppToken.MITM.value, "--ca-cert", cert_path])
        except ManagerError as exc:
            logging.error(str(exc))
        print("")
        pause()


def remove_apps_menu(manager, ask=prompt.ask, pause=prompt.pause):
    while True:
        tokens = _select_apps("REMOVE APPS MENU", "remove", ask)
        if tokens is None:
            return True
        if tokens:
            names = [token.value for token in tokens]
            logging.info("Removing: %s" % " ".join(names))
            try:
                manager.forward(HelperCommand.UNINSTALL, names)
            except ManagerError as exc:
                logging.error(str(exc))
        print("")
        pause()


def hack_menu(manager, ask=prompt.ask):
    print("")
    print("Available hacks:")
    for token in HACK_TOKENS:
        print("  %-14s - %s" % (token.value, APP_DESCRIPTIONS[token]))
    print("")
    hacks = ask("Enter hack to apply").split()
    if not hacks:
        return True
    return manager.forward(HelperCommand.HACK, hacks)


def print_status(manager):
    host = manager.host
    header("WAYDROID MANAGER (v%s)" % VERSION)
    try:
        abi = "Android ABI %s" % get_arch(host.arch)[0]
    except ValueError:
        abi = "no Android images for this CPU"
    print("System: %s | %s (%s) | Kernel: %s" %
          (host.distro_id, host.arch, abi, host.kernel_version))
    print("Wayland: %s" % ("Detected" if manager.session.is_wayland_active
                           else "Not detected"))
    print("Binder: %s" % probe.binder_state().value)
    if not probe.is_waydroid_installed():
        print("WayDroid: Not installed")
    elif probe.is_container_active(manager.config.service_name):
        print("WayDroid: Container running | Session: %s" % (
            "Running" if probe.get_waydroid_session() else "Stopped"))
    else:
        print("WayDroid: Container stopped")
    if manager.session.is_root:
        backend = probe.detect_firewall_backend()
        interface = manager.config.bridge_interface
        if backend is None:
            print("Firewall: none detected")
        elif probe.is_firewall_configured(backend, interface):
            print("Firewall: %s allows %s" % (backend.value, interface))
        else:
            print("Firewall: %s not configured for %s" %
                  (backend.value, interface))
    print("Waydroid Script: %s" % ("Installed" if manager.bridge.is_present()
                                   else "Not installed"))
    print("Log File: %s" % manager.config.log_file)
    print("")


MENU = [
    ("Install WayDroid", lambda m: m.install_waydroid(), True),
    ("Install Apps (via waydroid_script)", install_apps_menu, False),
    ("Remove Apps (via waydroid_script)", remove_apps_menu, False),
    ("Get Android ID (Play Store Certification)", lambda m: m.certified(), True),
    ("Apply Hacks", hack_menu, True),
    ("Start WayDroid (Full UI Mode)", lambda m: m.launch_ui(), True),
    ("Start WayDroid (Multi-window Mode)", lambda m: m.launch_multi(), True),
    ("Stop WayDroid", lambda m: m.service("stop"), True),
    ("Restart WayDroid", lambda m: m.service("restart"), True),
    ("Show Status", lambda m: m.service("status"), True),
    ("Update waydroid_script", lambda m: m.setup_helper(update=True), True),
    ("Install Dependencies", lambda m: m.install_deps(), True),
    ("Setup waydroid_script", lambda m: m.setup_helper(), True),
    ("Check Binder Module", lambda m: m.check_binder(), True),
    ("Help", lambda m: print_help() or True, True),
]


def interactive(manager, ask=prompt.ask, pause=prompt.pause):
    exit_choice = str(len(MENU) + 1)
    while True:
        clear_screen()
        print_status(manager)
        for number, (label, _action, _pause) in enumerate(MENU, 1):
            print("%d) %s" % (number, label))
        print("%s) Exit" % exit_choice)
        print("")
        choice = ask("Select [1-%s]" % exit_choice, default=exit_choice)
        if choice == exit_choice:
            logging.info("Goodbye!")
            return
        if not choice.isdigit() or not 1 <= int(choice) <= len(MENU):
            logging.error("Invalid option")
            pause()
            continue
        label, action, wait = MENU[int(choice) - 1]
        try:
            action(manager)
        except ManagerError as exc:
            logging.error(str(exc))
        if wait:
            pause()


# CLI

HELP = """\
USAGE:
    {prog} [OPTIONS] [COMMAND] [ARGS...]

Without a command an interactive menu is shown.

COMMANDS:
  Setup:
    setup              Clone and setup waydroid_script
    install-deps       Install required system dependencies and firewall rules

  Installation:
    install            Install WayDroid (packages, binder, firewall, service)
    check-binder       Detect and set up the binder kernel module

  App Management (via waydroid_script):
    install <apps>     Install apps (gapps, microg, libndk, libhoudini, etc.)
    remove <apps>      Remove apps
    certified          Get Android ID for Play Store certification
    hack <hacks>       Apply hacks (nodataperm, hidestatusbar)

  UI Modes:
    ui                 Start WayDroid in full UI mode
    multi              Start WayDroid in multi-window mode

  Service:
    start | stop | restart | status

  Utilities:
    clean              Remove a leftover lock file
    help               Show this help

OPTIONS:
    -c, --config PATH  Configuration file (default: {config})
    --log-file PATH    Log file
    --lock-file PATH   Lock file
    --script-dir PATH  waydroid_script checkout
    -d, --debug        Verbose output
    -v, --version      Print version

AVAILABLE APPS:
{apps}

EXAMPLES:
    sudo {prog} install
    sudo {prog} install gapps microg magisk
    sudo {prog} install mitm --ca-cert cert.pem
    sudo {prog} certified

NOTE: Most commands require root privileges (sudo)"""


def print_help():
    apps = "\n".join("    %-14s - %s" % (token.value, APP_DESCRIPTIONS[token])
                     for token in AppToken)
    print(HELP.format(prog=PROG, config=CONFIG_FILE, apps=apps))


def build_parser():
    parser = argparse.ArgumentParser(
        description="WayDroid installer and manager", prog=PROG,
        add_help=False)
    parser.add_argument("-h", "--help", action="store_true",
                        help="Show help")
    parser.add_argument("-v", "--version", action="store_true",
                        help="Print version")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Verbose output")
    parser.add_argument("-c", "--config", default=CONFIG_FILE,
                        help="Configuration file")
    parser.add_argument("--log-file", help="Log file")
    parser.add_argument("--lock-file", help="Lock file")
    parser.add_argument("--script-dir", help="waydroid_script checkout")
    parser.add_argument("command", nargs="?", help="Command to run")
    parser.add_argument("args", nargs=argparse.REMAINDER,
                        help="Command arguments")
    return parser


def _exit_on_signal(signum, frame):
    raise SystemExit(128 + signum)


def install_signal_handlers():
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _exit_on_signal)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    if args.version:
        print(VERSION)
        return 0
    if args.help:
        print_help()
        return 0

    config = Config.load(args.config, log_file=args.log_file,
                         lock_file=args.lock_file, script_dir=args.script_dir)
    command = None
    if args.command:
        try:
            command = parse_command(args.command)
        except UnknownCommandError as exc:
            logging.error(str(exc))
            print("")
            print_help()
            return 1

    if command is Command.CLEAN:
        if lock.clean(config.lock_file):
            success("Removed lock file %s" % config.lock_file)
        else:
            logging.info("No lock file at %s" % config.lock_file)
        return 0
    if command is Command.HELP:
        print_help()
        return 0

    needs_root = command is None or COMMANDS[command][1]
    if needs_root and not is_root():
        logging.error(str(NotRootError()))
        print("Try: sudo %s" % " ".join([PROG] + (argv if argv is not None
                                                    else sys.argv[1:])))
        return 1
    if is_root():
        add_log_file(config.log_file)

    host = probe.host_profile()
    session = probe.resolve_session()
    manager = Manager(config, host, session)
    install_signal_handlers()
    try:
        if command is None:
            with lock.LockManager(config.lock_file, config.lock_stale_after,
                                  confirm=prompt.confirm):
                interactive(manager)
            return 0
        handler, _needs_root = COMMANDS[command]
        return 0 if handler(manager, args.args) else 1
    except ManagerError as exc:
        logging.error(str(exc))
        return 1
    except KeyboardInterrupt:
        print("")
        logging.info("Canceled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
