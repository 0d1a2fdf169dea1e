import argparse
import io
import logging
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import usb.core

import ectester.config as config
from ectester import __version__
from ectester.cli import main, setup_logging
from ectester.mount import resolve_mount
from ectester.protocols.ec import SecurityState
from ectester.scan import scan_bootloader_devices, scan_ecs

FIRMWARE = b"UF2\n" + bytes(512)
BOARD = "system76/thelio_io_2"
VERSION = "0.21.0-65-g0c3e4c"

logging.getLogger("ectester").addHandler(logging.NullHandler())


class TestEndToEnd(unittest.TestCase):
	"""
	Full runs with the USB bus, sysfs, mount table and kernel
	module simulated
	"""

	def setUp(self) -> None:
		self.tmpdir = tempfile.TemporaryDirectory()
		root = self.tmpdir.name

		self.firmware = os.path.join(root, "firmware.uf2")
		with open(self.firmware, "wb") as file:
			file.write(FIRMWARE)

		# bootloader drive and its partition in a fake /sys/class/block
		self.sysfs = os.path.join(root, "class", "block")
		self.disk = os.path.join(root, "devices", "sda")
		os.makedirs(self.sysfs)
		os.makedirs(os.path.join(self.disk, "device"))
		os.makedirs(os.path.join(self.disk, "sda1"))
		for attr, value in [("vendor", "RPI     \n"), ("model", "RP2             \n")]:
			with open(os.path.join(self.disk, "device", attr), "w") as file:
				file.write(value)
		with open(os.path.join(self.disk, "sda1", "partition"), "w") as file:
			file.write("1\n")
		os.symlink(self.disk, os.path.join(self.sysfs, "sda"))
		os.symlink(os.path.join(self.disk, "sda1"), os.path.join(self.sysfs, "sda1"))
		os.makedirs(os.path.join(self.sysfs, "nvme0n1", "device"))

		self.mount = os.path.join(root, "RPI-RP2")
		os.makedirs(self.mount)
		self.mounts = os.path.join(root, "mounts")
		with open(self.mounts, "w") as file:
			file.write(f"/dev/sda1 {self.mount} vfat rw,nosuid,nodev 0 0\n")

		self.conf = os.path.join(root, "ectester.conf")
		self.profile = os.path.join(root, "fixture.yaml")
		with open(self.profile, "w") as file:
			file.write(f"""
kernel-module: ectester_not_a_module
modprobe-conf: {self.conf}
poll-interval: 0
settle-delay: 0
unlock-retries: 3
bootloader-retries: 3
runtime-retries: 3
""")

		self.locked_ec = MagicMock()
		self.locked_ec.security_get.side_effect = [SecurityState.LOCK, SecurityState.UNLOCK]
		self.runtime_ec = MagicMock()
		self.runtime_ec.board.return_value = BOARD
		self.runtime_ec.version.return_value = VERSION
		self.runtime_ec.fan_get.return_value = 127
		self.runtime_ec.fan_tach.return_value = 300

		patches = [
			patch("time.sleep"),
			patch("ectester.cli.setup_logging", return_value=logging.getLogger("ectester")),
			patch("ectester.phases.unlock.scan_ecs", return_value=[self.locked_ec]),
			patch("ectester.phases.functional.scan_ecs", side_effect=[[], [self.runtime_ec]]),
			patch("ectester.phases.flash.scan_bootloader_devices",
				side_effect=lambda vendor, model: scan_bootloader_devices(vendor, model, self.sysfs)),
			patch("ectester.phases.flash.resolve_mount",
				side_effect=lambda dev, cmd: resolve_mount(dev, cmd, self.mounts)),
		]
		for patcher in patches:
			patcher.start()
			self.addCleanup(patcher.stop)

		self.stderr = io.StringIO()
		patcher = patch("sys.stderr", self.stderr)
		patcher.start()
		self.addCleanup(patcher.stop)

	def tearDown(self) -> None:
		config.fixture_config.clear()
		self.tmpdir.cleanup()

	def run_main(self) -> int:
		return main(["-c", self.profile, "-f", self.firmware])

	def test_pass(self) -> None:
		self.assertEqual(self.run_main(), 0)
		self.assertEqual(self.stderr.getvalue(), "PASS\n")

		self.locked_ec.security_set.assert_called_once_with(SecurityState.PREPARE_UNLOCK)
		self.locked_ec.reset.assert_called_once()
		with open(os.path.join(self.mount, "firmware.uf2"), "rb") as file:
			self.assertEqual(file.read(), FIRMWARE)
		self.assertEqual(self.runtime_ec.fan_tach.call_count, 4)
		self.assertFalse(os.path.exists(self.conf))

	def test_version_mismatch(self) -> None:
		self.runtime_ec.version.return_value = "0.21.0-64-g1a2b3c"

		self.assertEqual(self.run_main(), 1)

		verdict = self.stderr.getvalue()
		self.assertTrue(verdict.startswith("FAIL: "))
		self.assertIn("0.21.0-64-g1a2b3c", verdict)
		self.assertIn(VERSION, verdict)
		self.assertFalse(os.path.exists(self.conf))

	def test_missing_bootloader(self) -> None:
		os.remove(os.path.join(self.disk, "device", "model"))

		self.assertEqual(self.run_main(), 1)

		self.assertIn("found 0 bootloaders, expected 1", self.stderr.getvalue())
		self.runtime_ec.board.assert_not_called()
		self.assertFalse(os.path.exists(self.conf))

	def test_missing_firmware(self) -> None:
		self.assertEqual(main(["-c", self.profile, "-f", os.path.join(self.tmpdir.name, "missing.uf2")]), 1)

		self.assertTrue(self.stderr.getvalue().startswith("FAIL: "))
		self.locked_ec.security_get.assert_not_called()

	def test_usb_backend_missing(self) -> None:
		with patch("ectester.phases.unlock.scan_ecs", side_effect=scan_ecs), \
			patch("usb.core.find", side_effect=usb.core.NoBackendError("No backend available")):
			self.assertEqual(self.run_main(), 1)

		verdict = self.stderr.getvalue()
		self.assertTrue(verdict.startswith("FAIL: "))
		self.assertIn("No backend available", verdict)
		self.assertFalse(os.path.exists(self.conf))


class TestUtilities(unittest.TestCase):
	def setUp(self) -> None:
		self.stdout = io.StringIO()
		patches = [
			patch("sys.stdout", self.stdout),
			patch("sys.stderr", io.StringIO()),
			patch("ectester.cli.setup_logging", return_value=logging.getLogger("ectester")),
		]
		for patcher in patches:
			patcher.start()
			self.addCleanup(patcher.stop)

	def test_version(self) -> None:
		self.assertEqual(main(["--version"]), 0)
		self.assertIn(__version__, self.stdout.getvalue())

	def test_template(self) -> None:
		self.assertEqual(main(["-t", "thelio-io-2"]), 0)
		self.assertIn("bootloader-model: RP2", self.stdout.getvalue())

	def test_unknown_template(self) -> None:
		self.assertEqual(main(["-t", "nope"]), 1)

	def test_udev(self) -> None:
		self.assertEqual(main(["--udev"]), 0)
		self.assertIn('ATTRS{idVendor}=="3384"', self.stdout.getvalue())


class TestLogging(unittest.TestCase):
	def setUp(self) -> None:
		self.tmpdir = tempfile.TemporaryDirectory()
		self.logger = logging.getLogger("ectester")
		saved = list(self.logger.handlers)
		self.addCleanup(self.restore_handlers, saved)

		patcher = patch("sys.stdout", io.StringIO())
		patcher.start()
		self.addCleanup(patcher.stop)

	def restore_handlers(self, saved: list) -> None:
		for handler in list(self.logger.handlers):
			self.logger.removeHandler(handler)
			handler.close()
		for handler in saved:
			self.logger.addHandler(handler)
		self.tmpdir.cleanup()

	def args(self, loglevel: str):
		return argparse.Namespace(loglevel=loglevel, logfile=os.path.join(self.tmpdir.name, "board_test.log"))

	def test_repeated_setup(self) -> None:
		for _ in range(3):
			setup_logging(self.args("debug"))

		self.assertEqual(len(self.logger.handlers), 2)
		self.logger.info("one line")
		with open(os.path.join(self.tmpdir.name, "board_test.log"), "r") as file:
			self.assertEqual(file.read().count("one line"), 1)

	def test_silent(self) -> None:
		setup_logging(self.args("debug"))
		setup_logging(self.args("silent"))

		self.assertEqual(len(self.logger.handlers), 1)
		self.assertIsInstance(self.logger.handlers[0], logging.StreamHandler)
		self.assertNotIsInstance(self.logger.handlers[0], logging.FileHandler)
