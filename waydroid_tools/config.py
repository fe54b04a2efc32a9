import configparser
import os

CONFIG_FILE = "/etc/waydroid-manager.conf"
SECTION = "manager"

LOG_FILE = "/var/log/waydroid-manager.log"
LOCK_FILE = "/tmp/waydroid-manager.lock"
SCRIPT_DIR = "/var/lib/waydroid-manager/waydroid_script"
HELPER_REPO = "https://github.com/casualsnek/waydroid_script.git"
LOCK_STALE_AFTER = 3600
BRIDGE_INTERFACE = "waydroid0"
SERVICE_NAME = "waydroid-container"
LAUNCH_DELAY = 2.0

WAYDROID_DIR = "/var/lib/waydroid/"
CERTIFICATION_URL = "https://www.google.com/android/uncertified/"


class Config:
    """Paths and tunables shared by every component.

    Built once at startup from the INI file and command line, then passed to
    the components that need it.
    """

    def __init__(self, log_file=LOG_FILE, lock_file=LOCK_FILE,
                 script_dir=SCRIPT_DIR, helper_repo=HELPER_REPO,
                 lock_stale_after=LOCK_STALE_AFTER,
                 bridge_interface=BRIDGE_INTERFACE,
                 service_name=SERVICE_NAME, launch_delay=LAUNCH_DELAY,
                 waydroid_dir=WAYDROID_DIR):
        self.log_file = log_file
        self.lock_file = lock_file
        self.script_dir = script_dir
        self.helper_repo = helper_repo
        self.lock_stale_after = int(lock_stale_after)
        self.bridge_interface = bridge_interface
        self.service_name = service_name
        self.launch_delay = float(launch_delay)
        self.waydroid_dir = waydroid_dir

    @property
    def images_dir(self):
        return os.path.join(self.waydroid_dir, "images")

    @classmethod
    def load(cls, path=CONFIG_FILE, **overrides):
        values = {}
        config = configparser.ConfigParser()
        config.read(path)
        if config.has_section(SECTION):
            section = config[SECTION]
            for key in ("log_file", "lock_file", "script_dir", "helper_repo",
                        "bridge_interface", "service_name", "waydroid_dir"):
                if key in section:
                    values[key] = section[key]
            if "lock_stale_after" in section:
                values["lock_stale_after"] = section.getint("lock_stale_after")
            if "launch_delay" in section:
                values["launch_delay"] = section.getfloat("launch_delay")
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
