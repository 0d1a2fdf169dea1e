# This file is part of ectester
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; either version 2
# of the License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.

import os
import re
import yaml
from ectester.utils import ConfigError
import logging

logger = logging.getLogger("ectester")

default_config = {
	# System76 Thelio Io 2
	"board": "system76/thelio_io_2",
	"version": "0.21.0-65-g0c3e4c",
	"usb-id": "3384:000b",
	"usb-interface": 1,
	"runtime-usb-id": "3384:000b",
	"runtime-usb-interface": 1,
	# RP2040 mass storage bootloader
	"bootloader-vendor": "RPI",
	"bootloader-model": "RP2",
	"firmware-name": "firmware.uf2",
	"fan-count": 4,
	"fan-pwm": 127,
	"min-rpm": 300,
	"kernel-module": "system76_thelio_io",
	"modprobe-conf": "/etc/modprobe.d/ectester.conf",
	"unlock-retries": 60,
	"bootloader-retries": 30,
	"runtime-retries": 30,
	"poll-interval": 1,
	"settle-delay": 1,
	"hid-retries": 10,
	"hid-timeout": 100,
	"mount-command": ["udisksctl", "mount", "--block-device"],
	"strict-mount": True,
}

fixture_config = {}  # Global immutable config to be initialized with CLI args

def str_rule(pattern: str):
	return {
		"type": str,
		"pattern": pattern,
	}

def int_rule(minimum: int = 0, maximum: int = None):
	return {
		"type": int,
		"min": minimum,
		"max": maximum,
	}

usb_id_rule = str_rule(r"[\da-fA-F]{4}:[\da-fA-F]{4}")
path_rule = str_rule(".+")
delay_rule = {"type": (int, float)}
bool_rule = {"type": bool}

config_rule = {
	"type": dict,
	"board": str_rule(".+"),
	"version": str_rule(".+"),
	"usb-id": usb_id_rule,
	"usb-interface": int_rule(0, 255),
	"runtime-usb-id": usb_id_rule,
	"runtime-usb-interface": int_rule(0, 255),
	"bootloader-vendor": str_rule(".+"),
	"bootloader-model": str_rule(".+"),
	"firmware": path_rule,
	"firmware-name": str_rule(r"[\w\-\.]+"),
	"fan-count": int_rule(1, 255),
	"fan-pwm": int_rule(0, 255),
	"min-rpm": int_rule(0, 0xffff),
	"kernel-module": str_rule(r"[\w\-]+"),
	"modprobe-conf": path_rule,
	"unlock-retries": int_rule(1),
	"bootloader-retries": int_rule(1),
	"runtime-retries": int_rule(1),
	"poll-interval": delay_rule,
	"settle-delay": delay_rule,
	"hid-retries": int_rule(1),
	"hid-timeout": int_rule(1),
	"mount-command": {
		"type": list,
		"rules": [
			str_rule(r"\S+"),
		],
	},
	"strict-mount": bool_rule,
}

def check_entry(entry, rule, name="config"):
	if rule["type"] is object:
		return

	if not isinstance(entry, rule["type"]) or (isinstance(entry, bool) and rule["type"] is int):
		raise ConfigError(f"Parameter {name} has invalid type! {type(entry)} instead of {rule['type']}")

	if isinstance(entry, dict):
		unknown_keys = set(entry.keys()) - (set(rule.keys()) - {"type"})
		if unknown_keys:
			raise ConfigError(f"Found unknown parameter(s): {unknown_keys}")

		for key,value in entry.items():
			check_entry(value, rule[key], key)

	elif isinstance(entry, str):
		pattern = re.compile(f"^{rule['pattern']}$")
		if pattern.match(entry) is None:
			raise ConfigError(f"Parameter {name} with pattern {pattern.pattern} has invalid value {entry}")

	elif isinstance(entry, list):
		if entry == []:
			raise ConfigError(f"Parameter {name} is empty")
		for sub_entry in entry:
			check_entry(sub_entry, rule["rules"][0], name)

	elif rule["type"] is int:
		if entry < rule["min"] or (rule["max"] is not None and entry > rule["max"]):
			raise ConfigError(f"Parameter {name} is out of range: {entry}")

def read_config_file(path: str) -> dict:
	try:
		with open(path, "r") as file:
			config = yaml.safe_load(file)
	except (OSError, yaml.YAMLError) as err:
		raise ConfigError(f"failed to read fixture profile {path}: {err}") from err

	if config is None:
		return {}

	if not isinstance(config, dict):
		raise ConfigError(f"fixture profile {path} did not evaluate to dict: {config}")

	# firmware paths in a profile are relative to the profile itself
	if "firmware" in config and isinstance(config["firmware"], str):
		config["firmware"] = os.path.join(os.path.dirname(path), os.path.expanduser(config["firmware"]))

	return config

def read_firmware(path: str) -> bytes:
	try:
		with open(path, "rb") as file:
			blob = file.read(-1)
	except OSError as err:
		raise ConfigError(f"failed to read firmware image {path}: {err}") from err

	if len(blob) == 0:
		raise ConfigError(f"firmware image {path} is empty")

	return blob

def load_config(overrides: dict) -> dict:
	config = {**default_config, **overrides}
	check_entry(config, config_rule)

	if "firmware" not in config:
		raise ConfigError("no firmware image given, please pass --firmware or set 'firmware' in a fixture profile")

	return config

def init_config(args):
	# this is the only time that config.fixture_config should be modified!
	overrides = {}
	if args.config:
		for path in args.config:
			overrides.update(read_config_file(path))

	if args.firmware:
		overrides["firmware"] = args.firmware

	config = load_config(overrides)
	fixture_config.clear()
	fixture_config.update(config)

	# loaded up front so that a bad image fails before any board is touched
	fixture_config["firmware-blob"] = read_firmware(config["firmware"])

	logger.debug(f"fixture_config:{str(config)}")
