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

import sys
import argparse
from ectester import __version__
from ectester.utils import TesterError
from ectester.tester import run_tester
import ectester.config as config
import logging
import importlib.resources

BOLD = "\033[1m"
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

def list_templates() -> dict:
	templates = {}
	for file in importlib.resources.files("ectester").joinpath("templates").iterdir():
		if file.name.endswith(".yaml"):
			templates[file.name[:-5]] = file
	return templates

def print_verdict(message: str, color: str):
	if sys.stderr.isatty():
		message = f"{BOLD}{color}{message}{RESET}"
	print(message, file=sys.stderr)

def setup_logging(args):
	logger = logging.getLogger("ectester")
	logger.setLevel(logging.DEBUG)

	# main() may run more than once in a process
	for handler in list(logger.handlers):
		logger.removeHandler(handler)
		handler.close()

	log_formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

	stdout_handler = logging.StreamHandler(sys.stdout)
	stdout_handler.setLevel(logging.INFO)
	stdout_handler.setFormatter(log_formatter)
	logger.addHandler(stdout_handler)

	if args.loglevel != "silent":
		log_handler = logging.FileHandler(args.logfile, encoding="utf-8")
		log_handler.setFormatter(log_formatter)
		if args.loglevel == "debug":
			log_handler.setLevel(logging.DEBUG)
		elif args.loglevel == "info":
			log_handler.setLevel(logging.INFO)
		logger.addHandler(log_handler)

	return logger

def main(argv=None) -> int:
	templates = list_templates()
	template_listing = "\n".join(sorted(templates.keys()))
	example = (
		"""Examples:
	ectester -f firmware.uf2
	ectester -c thelio-io-2.yaml --loglevel debug

Templates:
"""
		+ template_listing
	)

	parser = argparse.ArgumentParser(
		prog="ectester", epilog=example, formatter_class=argparse.RawDescriptionHelpFormatter
	)
	fixture = parser.add_argument_group("Fixture")
	fixture.add_argument(
		"-c",
		"--config",
		help="fixture profile, passed as a yaml file, may be repeated",
		metavar="thelio-io-2.yaml",
		action="append",
	)
	fixture.add_argument("-f", "--firmware", help="firmware image written to the bootloader drive", metavar="firmware.uf2")
	optional = parser.add_argument_group("Optional")
	optional.add_argument(
		"--loglevel",
		help="set loglevel",
		choices=["silent", "info", "debug"],
		default="silent",
	)
	optional.add_argument("--logfile", help="set logfile", default="board_test.log")
	utilargs = parser.add_argument_group("Utilities")
	utilargs.add_argument("--version", help="show version", action="store_true")
	utilargs.add_argument(
		"-t",
		"--template",
		help="print a bundled fixture profile",
		metavar="name",
	)
	utilargs.add_argument(
		"--udev", help="print udev rules granting access to the board", action="store_true"
	)

	args = parser.parse_args(argv)

	logger = setup_logging(args)

	# show version
	if args.version:
		print(f"ectester v{__version__}")
		return 0

	# print template
	if args.template:
		if args.template not in templates:
			print(f"no template named {args.template}, please run ectester -h for a list of valid templates", file=sys.stderr)
			return 1

		print(templates[args.template].read_text())
		return 0

	# print udev rules
	if args.udev:
		print(importlib.resources.files("ectester").joinpath("50-ectester.rules").read_text())
		return 0

	try:
		config.init_config(args)
		run_tester()
	except TesterError as err:
		logger.debug("run failed", exc_info=True)
		print_verdict(f"FAIL: {err}", RED)
		return 1

	print_verdict("PASS", GREEN)
	if args.loglevel != "silent":
		logger.info(f"Logs were appended to {args.logfile}")

	return 0

def cli():
	sys.exit(main())

if __name__ == "__main__":
	cli()
