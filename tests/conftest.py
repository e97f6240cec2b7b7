# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""Shared fixtures: an in-memory host with Mellanox NICs."""

from copy import deepcopy
from typing import Dict, List, Optional, Tuple

import pytest

from errors import HostUtilsError
from models import (
    NicConfigurationTemplate,
    NicDevice,
    NicDeviceConfigurationSpec,
    NicDevicePort,
    NicDeviceSpec,
    NicDeviceStatus,
    NvConfig,
    PciDevice,
)


class FakeHostUtils:
    """HostUtils stand-in that keeps NV and runtime state in memory.

    Every call is recorded in `calls` as (method, args...).
    """

    def __init__(self):
        self.calls: List[Tuple] = []
        self.pci_devices: List[PciDevice] = []
        self.vfs = set()
        self.vpd: Dict[str, Tuple[str, str]] = {}
        self.firmware: Dict[str, Tuple[str, str]] = {}
        self.interfaces: Dict[str, str] = {}
        self.rdma_devices: Dict[str, str] = {}
        self.link_speed = 16
        self.nv_config = NvConfig()
        # NV config exposed after a firmware reset, if different
        self.nv_config_after_fw_reset: Optional[NvConfig] = None
        self.max_read_request: Dict[str, int] = {}
        self.qos: Dict[str, Tuple[str, str]] = {}
        self.fail_on = set()

    def _record(self, method, *args):
        self.calls.append((method, ) + args)
        if method in self.fail_on:
            raise HostUtilsError(f"{method} failed")

    def writes(self) -> List[Tuple]:
        return [
            c for c in self.calls if c[0] in (
                'set_nv_config_parameter', 'reset_nv_config',
                'reset_nic_firmware', 'set_max_read_request_size',
                'set_trust_and_pfc')
        ]

    def get_pci_devices(self):
        self._record('get_pci_devices')
        return list(self.pci_devices)

    def is_sriov_vf(self, pci_address):
        self._record('is_sriov_vf', pci_address)
        return pci_address in self.vfs

    def get_part_and_serial_number(self, pci_address):
        self._record('get_part_and_serial_number', pci_address)
        return self.vpd[pci_address]

    def get_firmware_version_and_psid(self, pci_address):
        self._record('get_firmware_version_and_psid', pci_address)
        return self.firmware[pci_address]

    def get_interface_name(self, pci_address):
        self._record('get_interface_name', pci_address)
        return self.interfaces.get(pci_address, "")

    def get_rdma_device_name(self, pci_address):
        self._record('get_rdma_device_name', pci_address)
        return self.rdma_devices.get(pci_address, "")

    def get_pci_link_speed(self, pci_address):
        self._record('get_pci_link_speed', pci_address)
        return self.link_speed

    def query_nv_config(self, pci_address, timeout=None):
        self._record('query_nv_config', pci_address)
        return deepcopy(self.nv_config)

    def set_nv_config_parameter(self, pci_address, name, value):
        self._record('set_nv_config_parameter', pci_address, name, value)
        self.nv_config.next_boot_config[name] = value

    def reset_nv_config(self, pci_address):
        self._record('reset_nv_config', pci_address)
        self.nv_config.next_boot_config = dict(self.nv_config.default_config)

    def reset_nic_firmware(self, pci_address, timeout=None):
        self._record('reset_nic_firmware', pci_address)
        if self.nv_config_after_fw_reset is not None:
            self.nv_config = self.nv_config_after_fw_reset
        else:
            self.nv_config.current_config = dict(
                self.nv_config.next_boot_config)

    def get_max_read_request_size(self, pci_address):
        self._record('get_max_read_request_size', pci_address)
        return self.max_read_request.get(pci_address, 512)

    def set_max_read_request_size(self, pci_address, size):
        self._record('set_max_read_request_size', pci_address, size)
        self.max_read_request[pci_address] = size

    def get_trust_and_pfc(self, interface_name):
        self._record('get_trust_and_pfc', interface_name)
        return self.qos.get(interface_name, ("pcp", "0,0,0,0,0,0,0,0"))

    def set_trust_and_pfc(self, interface_name, trust, pfc):
        self._record('set_trust_and_pfc', interface_name, trust, pfc)
        self.qos[interface_name] = (trust, pfc)


def make_device(template: Optional[NicConfigurationTemplate] = None,
                ports: int = 2,
                reset_to_default: bool = False) -> NicDevice:
    port_list = [
        NicDevicePort(pci=f"0000:3b:00.{i}",
                      network_interface=f"enp59s0f{i}np{i}",
                      rdma_interface=f"mlx5_{i}") for i in range(ports)
    ]
    status = NicDeviceStatus(type="1017",
                             serial_number="mt2116x09299",
                             part_number="mcx556a-ecat",
                             psid="MT_0000000008",
                             firmware_version="16.35.1012",
                             node="worker-1",
                             ports=port_list)
    spec = NicDeviceSpec(configuration=NicDeviceConfigurationSpec(
        reset_to_default=reset_to_default,
        template=template or NicConfigurationTemplate()))
    return NicDevice(name="1017-mt2116x09299", status=status, spec=spec)


def nv_config(current: Dict[str, str],
              next_boot: Optional[Dict[str, str]] = None,
              default: Optional[Dict[str, str]] = None) -> NvConfig:
    return NvConfig(current_config=dict(current),
                    next_boot_config=dict(
                        next_boot if next_boot is not None else current),
                    default_config=dict(
                        default if default is not None else current))


@pytest.fixture
def host_utils() -> FakeHostUtils:
    return FakeHostUtils()
