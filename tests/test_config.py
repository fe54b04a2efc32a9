"""
Tests for configuration loading and the CPU helpers.
"""

import os
import tempfile
import unittest

from waydroid_tools import config
from waydroid_tools.config import Config
from waydroid_tools.platform_tools import get_arch, recommended_translation_layer


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = os.path.join(self.tmp.name, "waydroid-manager.conf")

    def test_defaults_without_file(self):
        cfg = Config.load(self.path)
        self.assertEqual(cfg.log_file, config.LOG_FILE)
        self.assertEqual(cfg.lock_file, config.LOCK_FILE)
        self.assertEqual(cfg.lock_stale_after, 3600)
        self.assertEqual(cfg.bridge_interface, "waydroid0")
        self.assertEqual(cfg.service_name, "waydroid-container")
        self.assertEqual(cfg.images_dir, "/var/lib/waydroid/images")

    def test_file_values(self):
        with open(self.path, "w") as handle:
            handle.write("[manager]\n"
                         "lock_file = /run/wdm.lock\n"
                         "lock_stale_after = 60\n"
                         "launch_delay = 0.5\n"
                         "script_dir = /opt/waydroid_script\n")
        cfg = Config.load(self.path)
        self.assertEqual(cfg.lock_file, "/run/wdm.lock")
        self.assertEqual(cfg.lock_stale_after, 60)
        self.assertEqual(cfg.launch_delay, 0.5)
        self.assertEqual(cfg.script_dir, "/opt/waydroid_script")
        self.assertEqual(cfg.log_file, config.LOG_FILE)

    def test_overrides_beat_file(self):
        with open(self.path, "w") as handle:
            handle.write("[manager]\nlog_file = /var/log/a.log\n")
        cfg = Config.load(self.path, log_file="/tmp/b.log", lock_file=None)
        self.assertEqual(cfg.log_file, "/tmp/b.log")
        self.assertEqual(cfg.lock_file, config.LOCK_FILE)

    def test_other_sections_ignored(self):
        with open(self.path, "w") as handle:
            handle.write("[waydroid]\nlog_file = /nope\n")
        self.assertEqual(Config.load(self.path).log_file, config.LOG_FILE)


class TestPlatformTools(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def cpuinfo(self, content):
        fd, path = tempfile.mkstemp(prefix="cpuinfo", dir=self.tmp.name)
        with os.fdopen(fd, "w") as handle:
            handle.write(content)
        return path

    def test_get_arch(self):
        modern = self.cpuinfo("vendor_id\t: GenuineIntel\nflags\t: sse4_2 avx\n")
        self.assertEqual(get_arch("x86_64", modern), ("x86_64", 64))
        old = self.cpuinfo("flags\t: sse2\n")
        self.assertEqual(get_arch("x86_64", old), ("x86", 32))
        self.assertEqual(get_arch("aarch64"), ("arm64", 64))
        self.assertEqual(get_arch("armv7l"), ("arm", 32))
        with self.assertRaises(ValueError):
            get_arch("riscv64")

    def test_translation_layer(self):
        amd = self.cpuinfo("vendor_id\t: AuthenticAMD\n")
        intel = self.cpuinfo("vendor_id\t: GenuineIntel\n")
        self.assertEqual(recommended_translation_layer("x86_64", amd), "libndk")
        self.assertEqual(recommended_translation_layer("x86_64", intel),
                         "libhoudini")
        self.assertIsNone(recommended_translation_layer("aarch64", intel))
        self.assertIsNone(recommended_translation_layer(
            "x86_64", self.cpuinfo("")))


if __name__ == "__main__":
    unittest.main()
