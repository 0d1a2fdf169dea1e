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
#

"""
Minimal USB HID transport for one interface of a composite device.
Only raw report exchange is handled, report descriptors are not parsed.
When usbhid is bound to the interface, the matching hidraw node is used,
otherwise the interface is claimed through libusb.
"""

from ectester.utils import prettify_usb_addr, TransportError
import glob
import usb
import usb.core
import usb.util
import os
import platform
import select
import re
import logging
logger = logging.getLogger("ectester")

CTRL_HID_SET_REPORT   = 0x9

# Used by SET_REPORT
REPORT_TYPE_OUTPUT   = 0x2

class HIDError(TransportError):
	"Raised to signal failed I/O or invalid HID data in USB descriptors"
	pass

class HIDTimeout(HIDError):
	pass

def find_hid_interface(dev, interface_number: int):
	"""
	Returns the (configuration, interface) pair exposing HID interface
	interface_number, or (None, None)
	"""
	for cfg in dev:
		for intf in cfg:
			if intf.bInterfaceNumber != interface_number:
				continue
			if intf.bInterfaceClass == usb.CLASS_HID:
				return (cfg, intf)
	return (None, None)

def match_intr(direction: int):
	def match(desc) -> bool:
		attrs = usb.util.endpoint_type(desc.bmAttributes) == usb.util.ENDPOINT_TYPE_INTR
		return attrs and usb.util.endpoint_direction(desc.bEndpointAddress) == direction
	return match

class HIDDevice():
	def err(self, msg):
		err = f"Error while handling HID device {self.pretty_addr}: "
		err += msg
		raise HIDError(err)

	def get_hidraw_device(self):
		intf_sysfs = f"/sys/bus/usb/devices/{self.pretty_addr}:{self.main_cfg.bConfigurationValue}.{self.main_intf.bInterfaceNumber}"
		hidraw_glob = intf_sysfs + "/*/hidraw/hidraw*/uevent"
		devname_regex = re.compile("DEVNAME=(.*)\n")
		results = glob.glob(hidraw_glob)
		if len(results) == 0:
			return None
		uevent = results[0]
		with open(uevent, "r") as file:
			uevent_txt = file.read(-1)

		matches = devname_regex.findall(uevent_txt)
		if len(matches) == 0:
			return None

		hidraw_path = f"/dev/{matches[0]}"
		if not os.path.exists(hidraw_path):
			return None

		return hidraw_path

	def __init__(self, usb_dev, interface_number: int):
		self.usb_dev = usb_dev
		self.pretty_addr = prettify_usb_addr((usb_dev.bus, usb_dev.port_numbers))

		self.main_cfg, self.main_intf = find_hid_interface(usb_dev, interface_number)
		if self.main_intf is None:
			self.err(f"no HID interface with number {interface_number}")

		try:
			cur_cfg = self.usb_dev.get_active_configuration()
			if cur_cfg.bConfigurationValue != self.main_cfg.bConfigurationValue:
				logger.info(f"Expected cfg {self.main_cfg.bConfigurationValue} but device {self.pretty_addr} has cfg {cur_cfg.bConfigurationValue} instead, attempting to set cfg...")
				self.usb_dev.set_configuration(self.main_cfg.bConfigurationValue)

			kernel_driver = platform.system() == "Linux" and self.usb_dev.is_kernel_driver_active(interface_number)
		except usb.core.USBError as err:
			raise HIDError(f"Failed to configure USB device {self.pretty_addr}: {err}") from err

		self.intr_out = None
		if kernel_driver:
			# The kernel driver in question should be usbhid
			hidraw_path = self.get_hidraw_device()
			if hidraw_path is None:
				self.err("failed to find an associated hidraw device")
			self.hidraw_path = hidraw_path
			try:
				self.hidraw = open(self.hidraw_path, "rb+", buffering=0)
			except OSError as err:
				raise HIDError(f"Failed to open {hidraw_path}: {err}") from err
			logger.debug(f"HID device {self.pretty_addr} has hidraw dev {hidraw_path}")
		else:
			try:
				usb.util.claim_interface(self.usb_dev, interface_number)
			except usb.core.USBError as err:
				raise HIDError(f"Failed to claim interface {interface_number} of USB device {self.pretty_addr}, maybe something else is using this device?") from err

			self.hidraw = None

			self.intr_in = usb.util.find_descriptor(self.main_intf, custom_match=match_intr(usb.util.ENDPOINT_IN))
			if self.intr_in is None:
				self.release()
				self.err("Could not find interrupt IN endpoint!")

			# the interrupt OUT endpoint is optional, SET_REPORT is used otherwise
			self.intr_out = usb.util.find_descriptor(self.main_intf, custom_match=match_intr(usb.util.ENDPOINT_OUT))

			logger.debug(f"HID device {self.pretty_addr} has no hidraw dev")

	def set_report(self, report_id: int, data: bytes):
		bmRequestType = usb.util.CTRL_OUT | usb.util.CTRL_TYPE_CLASS | usb.util.CTRL_RECIPIENT_INTERFACE
		bRequest = CTRL_HID_SET_REPORT
		wValue = (REPORT_TYPE_OUTPUT << 8) & 0xff00
		wValue |= report_id & 0x00ff
		wIndex = self.main_intf.bInterfaceNumber
		logger.debug(f"set_report id {report_id} data length: {len(data)}")

		return self.usb_dev.ctrl_transfer(bmRequestType, bRequest, wValue, wIndex, data)

	def write(self, report: bytes):
		"""
		report[0] is the report id, which is stripped before
		sending when it is zero (unnumbered reports)
		"""
		try:
			if self.hidraw is not None:
				self.hidraw.write(report)
				return

			payload = report[1:] if report[0] == 0 else report
			if self.intr_out is not None:
				self.intr_out.write(payload)
			else:
				self.set_report(report[0], payload)
		except (OSError, usb.core.USBError) as err:
			raise HIDError(f"Failed to write to HID device {self.pretty_addr}: {err}") from err

	def read(self, length: int, timeout: int) -> bytes:
		"""
		Reads one input report, timeout is in milliseconds
		"""
		if self.hidraw is not None:
			r,w,e = select.select([self.hidraw], [], [], timeout / 1000)
			if self.hidraw not in r:
				raise HIDTimeout(f"Timeout while attempting to read {length} bytes from HID device {self.pretty_addr}")
			try:
				return self.hidraw.read(length)
			except OSError as err:
				raise HIDError(f"Failed to read from HID device {self.pretty_addr}: {err}") from err

		try:
			data = self.intr_in.read(length, timeout=timeout)
		except usb.core.USBTimeoutError as err:
			raise HIDTimeout(f"Timeout while attempting to read {length} bytes from HID device {self.pretty_addr}") from err
		except usb.core.USBError as err:
			raise HIDError(f"Failed to read from HID device {self.pretty_addr}: {err}") from err

		return bytes(data)

	def release(self):
		try:
			usb.util.release_interface(self.usb_dev, self.main_intf.bInterfaceNumber)
			usb.util.dispose_resources(self.usb_dev)
		except usb.core.USBError:
			# the device may already have detached after a reset
			logger.debug(f"HID device {self.pretty_addr} was gone when closing it")

	def close(self):
		if self.hidraw is not None:
			self.hidraw.close()
			return

		self.release()
