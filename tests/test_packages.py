"""
Tests for distro detection mapping and package manager invocations.
"""

import unittest
from unittest.mock import MagicMock, patch

from waydroid_tools import packages
from waydroid_tools.errors import CommandFailedError
from waydroid_tools.packages import DistroFamily, PackageInstaller
from waydroid_tools.probe import HostProfile, KernelFlavor


def host(distro, flavor=KernelFlavor.DEFAULT, kernel="6.8.0-45-generic"):
    return HostProfile(distro, kernel, flavor, "x86_64")


class TestDistroFamily(unittest.TestCase):

    def test_known_ids(self):
        cases = {
            "arch": DistroFamily.ARCH,
            "endeavouros": DistroFamily.ARCH,
            "cachyos": DistroFamily.ARCH,
            "ubuntu": DistroFamily.DEBIAN,
            "pop": DistroFamily.DEBIAN,
            "rocky": DistroFamily.FEDORA,
            "opensuse-tumbleweed": DistroFamily.OPENSUSE,
            "opensuse-leap": DistroFamily.OPENSUSE,
        }
        for distro, family in cases.items():
            with self.subTest(distro=distro):
                self.assertIs(packages.distro_family(distro), family)

    def test_unknown(self):
        self.assertIsNone(packages.distro_family("gentoo"))
        self.assertIsNone(packages.distro_family("unknown"))


class TestBinderPackages(unittest.TestCase):

    def test_arch_flavors(self):
        for flavor, headers in packages.ARCH_HEADERS.items():
            with self.subTest(flavor=flavor):
                self.assertEqual(
                    packages.binder_packages(host("arch", flavor)),
                    [headers, "binder_linux-dkms"])

    def test_arch_default_with_headers_installed(self):
        has = MagicMock(side_effect=lambda name: name == "linux-headers")
        self.assertEqual(
            packages.arch_headers_package(KernelFlavor.DEFAULT, has),
            "linux-headers")

    def test_arch_default_follows_installed_kernel(self):
        has = MagicMock(side_effect=lambda name: name == "linux-lts")
        self.assertEqual(
            packages.arch_headers_package(KernelFlavor.DEFAULT, has),
            "linux-lts-headers")

    def test_arch_default_fallback(self):
        self.assertEqual(
            packages.arch_headers_package(KernelFlavor.DEFAULT,
                                          lambda name: False),
            "linux-headers")

    def test_debian_uses_running_kernel(self):
        self.assertEqual(
            packages.binder_packages(host("ubuntu")),
            ["linux-headers-6.8.0-45-generic", "binder_linux-dkms"])

    def test_fedora(self):
        self.assertEqual(
            packages.binder_packages(host("fedora", kernel="6.9.4-200.fc40")),
            ["kernel-devel-6.9.4-200.fc40", "kernel-headers-6.9.4-200.fc40",
             "binder_linux-dkms"])

    def test_unknown(self):
        self.assertEqual(packages.binder_packages(host("gentoo")), [])


class TestPackageInstaller(unittest.TestCase):

    def test_debian_refreshes_then_installs(self):
        with patch("waydroid_tools.run.stream", return_value=0) as stream:
            PackageInstaller(host("debian")).install(["git", "lzip"])
        self.assertEqual([call.args[0] for call in stream.call_args_list], [
            ["apt", "update"],
            ["apt", "install", "-y", "git", "lzip"],
        ])

    def test_arch_upgrade(self):
        with patch("waydroid_tools.run.stream", return_value=0) as stream:
            PackageInstaller(host("manjaro")).install(["waydroid"],
                                                      upgrade=True)
        self.assertEqual([call.args[0] for call in stream.call_args_list], [
            ["pacman", "-Syu", "--noconfirm"],
            ["pacman", "-S", "--needed", "--noconfirm", "waydroid"],
        ])

    def test_arch_without_upgrade_skips_refresh(self):
        with patch("waydroid_tools.run.stream", return_value=0) as stream:
            PackageInstaller(host("arch")).install(["waydroid"])
        stream.assert_called_once_with(
            ["pacman", "-S", "--needed", "--noconfirm", "waydroid"])

    def test_failure_names_the_step(self):
        with patch("waydroid_tools.run.stream", return_value=100):
            with self.assertRaises(CommandFailedError) as ctx:
                PackageInstaller(host("fedora")).install(["waydroid"])
        self.assertEqual(ctx.exception.returncode, 100)
        self.assertIn("waydroid", str(ctx.exception))

    def test_unknown_distro_cannot_install(self):
        with self.assertRaises(CommandFailedError):
            PackageInstaller(host("gentoo")).install(["waydroid"])

    def test_dependencies(self):
        with patch("waydroid_tools.run.stream", return_value=0) as stream:
            self.assertTrue(
                PackageInstaller(host("opensuse-tumbleweed"))
                .install_dependencies())
        command = stream.call_args.args[0]
        self.assertEqual(command[:3], ["zypper", "--non-interactive", "install"])
        self.assertIn("waydroid", command)

    def test_unknown_distro_dependencies_need_override(self):
        with patch("waydroid_tools.run.stream") as stream, \
                self.assertLogs(level="WARNING"):
            self.assertFalse(PackageInstaller(
                host("gentoo"), confirm=lambda q: False).install_dependencies())
            self.assertTrue(PackageInstaller(
                host("gentoo"), confirm=lambda q: True).install_dependencies())
        stream.assert_not_called()


if __name__ == "__main__":
    unittest.main()
