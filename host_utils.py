# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""Host access layer for NIC discovery and configuration.

Wraps the host tools (lspci, mstflint suite, setpci, mlnx_qos) and sysfs
lookups needed to discover Mellanox NICs and read or change their
non-volatile and runtime configuration.

Every failing command raises HostUtilsError. Callers treat these as
transient and retry on their next reconcile pass.
"""

import logging
import re
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from constants import SYSFS_PCI_DEVICES_PATH
from errors import HostUtilsError, IncorrectSpecError
from models import NvConfig, PciDevice

logger = logging.getLogger(__name__)

# "Mellanox Technologies [15b3]" -> ("Mellanox Technologies", "15b3")
LSPCI_FIELD_REGEX = re.compile(r'^(?P<name>.*?)\s*\[(?P<id>[0-9a-fA-F]+)\]$')
FW_VERSION_REGEX = re.compile(r'^FW Version:\s*(?P<fw_ver>\S+)')
PSID_REGEX = re.compile(r'^PSID:\s*(?P<psid>\S+)')
VPD_FIELD_REGEX = re.compile(r'^(?P<key>PN|SN):\s*(?P<value>\S.*)$')
# "True(1)" -> "1", "ETH(2)" -> "2"
NV_VALUE_REGEX = re.compile(r'^\S*\((?P<value>-?\d+)\)$')
TRUST_REGEX = re.compile(r'Priority trust state:\s*(?P<trust>\w+)')

# PCIe Device Control register (offset 08h of the express capability),
# bits 14:12 encode max read request size as 128 << n
DEVICE_CONTROL_REGISTER = "CAP_EXP+08.w"
MAX_READ_REQUEST_SHIFT = 12
MAX_READ_REQUEST_MASK = 0x7000
MAX_READ_REQUEST_SIZES = (128, 256, 512, 1024, 2048, 4096)


def run_command(command: Sequence[str], timeout: Optional[float] = None) -> str:
    """Run a host command and return its stdout.

    Raises HostUtilsError when the command cannot be started, exits non-zero
    or exceeds the timeout.
    """
    logger.debug("Running command: %s", " ".join(command))
    try:
        result = subprocess.run(command,
                                check=True,
                                capture_output=True,
                                text=True,
                                timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise HostUtilsError(f"{command[0]} timed out after {timeout}s",
                             command=command) from e
    except subprocess.CalledProcessError as e:
        raise HostUtilsError(f"{command[0]} exited with {e.returncode}",
                             command=command,
                             stderr=e.stderr) from e
    except OSError as e:
        raise HostUtilsError(f"Failed to run {command[0]}: {e}",
                             command=command) from e
    return result.stdout


# ============================================================================
# Output Parsers
# ============================================================================


def _split_lspci_field(value: str) -> Tuple[str, str]:
    match = LSPCI_FIELD_REGEX.match(value)
    if not match:
        return value, ""
    return match.group('name'), match.group('id').lower()


def parse_lspci_output(out: str) -> List[PciDevice]:
    """Parse `lspci -Dnnmm` output into PciDevice records.

    A class field that carries no bracketed code is passed through as-is so
    that the caller can reject it when parsing the class id.
    """
    devices = []
    for line in out.splitlines():
        if not line.strip():
            continue
        fields = shlex.split(line)
        if len(fields) < 4:
            logger.debug("Skipping malformed lspci line: %s", line)
            continue
        address = fields[0]
        class_name, class_code = _split_lspci_field(fields[1])
        _, vendor_id = _split_lspci_field(fields[2])
        product_name, product_id = _split_lspci_field(fields[3])
        # class code is "0200": base class "02", subclass "00"
        class_id = class_code[:2] if class_code else class_name
        devices.append(
            PciDevice(address=address,
                      vendor_id=vendor_id,
                      class_id=class_id,
                      product_id=product_id,
                      product_name=product_name))
    return devices


def parse_mstflint_query_output(out: str) -> Dict[str, str]:
    """Extract 'FW Version' and 'PSID' from `mstflint q` output"""
    query_info = {}
    for line in out.splitlines():
        line = line.strip()
        fw_ver = FW_VERSION_REGEX.match(line)
        psid = PSID_REGEX.match(line)
        if fw_ver is not None:
            query_info['fw_ver'] = fw_ver.group('fw_ver')
        if psid is not None:
            query_info['psid'] = psid.group('psid')
    return query_info


def parse_mstvpd_output(out: str) -> Dict[str, str]:
    """Extract part number (PN) and serial number (SN) from `mstvpd` output"""
    vpd = {}
    for line in out.splitlines():
        match = VPD_FIELD_REGEX.match(line.strip())
        if match:
            vpd[match.group('key')] = match.group('value').strip()
    return vpd


def normalize_nv_value(value: str) -> str:
    """Reduce a mstconfig value to its numeric token when it has one"""
    match = NV_VALUE_REGEX.match(value)
    if match:
        return match.group('value')
    return value


def parse_mstconfig_query_output(out: str) -> NvConfig:
    """Parse `mstconfig -e q` output.

    The configuration table has Default, Current and Next Boot columns.
    Modified parameters are prefixed with '*'.
    """
    nv_config = NvConfig()
    in_table = False
    for line in out.splitlines():
        if line.strip().startswith('Configurations:'):
            in_table = True
            continue
        if not in_table:
            continue

        fields = line.split()
        if fields and fields[0] == '*':
            fields = fields[1:]
        if len(fields) != 4:
            # legend line or end of table
            continue
        name, default, current, next_boot = fields
        nv_config.default_config[name] = normalize_nv_value(default)
        nv_config.current_config[name] = normalize_nv_value(current)
        nv_config.next_boot_config[name] = normalize_nv_value(next_boot)
    return nv_config


def parse_mlnx_qos_output(out: str) -> Tuple[str, str]:
    """Extract trust state and PFC enable flags from `mlnx_qos` output.

    Returns (trust, pfc) where pfc is a comma separated list of flags,
    one per priority.
    """
    trust = ""
    trust_match = TRUST_REGEX.search(out)
    if trust_match:
        trust = trust_match.group('trust')

    pfc = ""
    in_pfc = False
    for line in out.splitlines():
        stripped = line.strip()
        if stripped.startswith('PFC configuration'):
            in_pfc = True
            continue
        if in_pfc and stripped.startswith('enabled'):
            pfc = ",".join(stripped.split()[1:])
            break
    return trust, pfc


def encode_max_read_request_size(size: int) -> int:
    if size not in MAX_READ_REQUEST_SIZES:
        raise IncorrectSpecError(
            f"Unsupported max read request size {size}, expected one of "
            f"{', '.join(str(s) for s in MAX_READ_REQUEST_SIZES)}")
    return MAX_READ_REQUEST_SIZES.index(size) << MAX_READ_REQUEST_SHIFT


def decode_max_read_request_size(register: int) -> int:
    return 128 << ((register & MAX_READ_REQUEST_MASK) >>
                   MAX_READ_REQUEST_SHIFT)


# ============================================================================
# Host Utilities
# ============================================================================


class HostUtils:
    """Access to PCI, firmware and QoS state of the host.

    Injected into HostManager; tests substitute a fake with the same methods.
    """

    def __init__(self, sysfs_pci_path: Path = SYSFS_PCI_DEVICES_PATH):
        self.sysfs_pci_path = sysfs_pci_path

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def get_pci_devices(self) -> List[PciDevice]:
        """List all PCI functions on the host"""
        return parse_lspci_output(run_command(['lspci', '-Dnnmm']))

    def is_sriov_vf(self, pci_address: str) -> bool:
        """Check if a PCI function is an SR-IOV Virtual Function.

        VFs have a 'physfn' symlink pointing to their parent PF.
        """
        physfn_path = self.sysfs_pci_path / pci_address / "physfn"
        return physfn_path.is_symlink()

    def get_part_and_serial_number(self, pci_address: str) -> Tuple[str, str]:
        """Read part and serial numbers from the device VPD"""
        vpd = parse_mstvpd_output(run_command(['mstvpd', pci_address]))
        part_number = vpd.get('PN')
        serial_number = vpd.get('SN')
        if not part_number or not serial_number:
            raise HostUtilsError(
                f"Part or serial number missing from VPD of {pci_address}",
                command=['mstvpd', pci_address])
        return part_number.lower(), serial_number.lower()

    def get_firmware_version_and_psid(self,
                                      pci_address: str) -> Tuple[str, str]:
        command = ['mstflint', '-d', pci_address, 'q']
        query_info = parse_mstflint_query_output(run_command(command))
        if 'fw_ver' not in query_info or 'psid' not in query_info:
            raise HostUtilsError(
                f"Firmware version or PSID missing for {pci_address}",
                command=command)
        return query_info['fw_ver'], query_info['psid']

    def _first_child(self, pci_address: str, subdir: str) -> str:
        path = self.sysfs_pci_path / pci_address / subdir
        try:
            if path.is_dir():
                for child in sorted(path.iterdir()):
                    return child.name
        except OSError as e:
            logger.debug("Failed to list %s: %s", path, e)
        return ""

    def get_interface_name(self, pci_address: str) -> str:
        """Network interface of a PCI function, empty if it has none"""
        return self._first_child(pci_address, "net")

    def get_rdma_device_name(self, pci_address: str) -> str:
        """RDMA device of a PCI function, empty if it has none"""
        return self._first_child(pci_address, "infiniband")

    def get_pci_link_speed(self, pci_address: str) -> int:
        """Maximum PCIe link speed in GT/s, e.g. 16 for Gen4"""
        path = self.sysfs_pci_path / pci_address / "max_link_speed"
        try:
            # "16.0 GT/s PCIe"
            return int(float(path.read_text().split()[0]))
        except (OSError, ValueError, IndexError) as e:
            raise HostUtilsError(
                f"Failed to read PCI link speed of {pci_address}: {e}") from e

    # ------------------------------------------------------------------
    # Non-volatile configuration
    # ------------------------------------------------------------------

    def query_nv_config(self,
                        pci_address: str,
                        timeout: Optional[float] = None) -> NvConfig:
        """Query default, current and next boot NV configuration"""
        out = run_command(['mstconfig', '-d', pci_address, '-e', 'q'],
                          timeout=timeout)
        return parse_mstconfig_query_output(out)

    def set_nv_config_parameter(self, pci_address: str, name: str,
                                value: str) -> None:
        logger.info("Setting NV parameter %s=%s on %s", name, value,
                    pci_address)
        run_command(
            ['mstconfig', '-d', pci_address, '-y', 'set', f"{name}={value}"])

    def reset_nv_config(self, pci_address: str) -> None:
        """Restore factory default NV configuration (effective after reboot)"""
        logger.info("Resetting NV configuration of %s", pci_address)
        run_command(['mstconfig', '-d', pci_address, '-y', 'reset'])

    def reset_nic_firmware(self,
                           pci_address: str,
                           timeout: Optional[float] = None) -> None:
        """Live firmware reset, makes pending NV changes effective"""
        logger.info("Performing firmware reset of %s", pci_address)
        run_command(
            ['mstfwreset', '-d', pci_address, '-y', '--sync', '1', 'reset'],
            timeout=timeout)

    # ------------------------------------------------------------------
    # Runtime configuration
    # ------------------------------------------------------------------

    def get_max_read_request_size(self, pci_address: str) -> int:
        out = run_command(
            ['setpci', '-s', pci_address, DEVICE_CONTROL_REGISTER])
        try:
            return decode_max_read_request_size(int(out.strip(), 16))
        except ValueError as e:
            raise HostUtilsError(
                f"Unexpected setpci output for {pci_address}: {out!r}") from e

    def set_max_read_request_size(self, pci_address: str, size: int) -> None:
        encoded = encode_max_read_request_size(size)
        run_command([
            'setpci', '-s', pci_address,
            f"{DEVICE_CONTROL_REGISTER}={encoded:x}:{MAX_READ_REQUEST_MASK:x}"
        ])

    def get_trust_and_pfc(self, interface_name: str) -> Tuple[str, str]:
        return parse_mlnx_qos_output(
            run_command(['mlnx_qos', '-i', interface_name]))

    def set_trust_and_pfc(self, interface_name: str, trust: str,
                          pfc: str) -> None:
        logger.info("Setting trust=%s pfc=%s on %s", trust, pfc,
                    interface_name)
        run_command([
            'mlnx_qos', '-i', interface_name, '--trust', trust, '--pfc', pfc
        ])
