# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
NIC device reconciliation engine.

HostManager discovers Mellanox NICs on the host and reconciles their
non-volatile (NV) and runtime configuration with the NicDevice spec:

- discover_nic_devices: scan PCI functions and group ports by serial number
- validate_device_nv_spec: classify NV state without changing anything
- apply_device_nv_spec: stage missing NV parameters on the device
- apply_device_runtime_spec: apply max read request, trust and PFC settings

All operations re-query the host on every call and hold no state besides
the node name and the injected HostUtils. Calls for the same device must be
serialized by the caller.

Writes are best-effort and never rolled back: a failure leaves the already
written parameters in place and the next reconcile pass re-drives the rest.
"""

import logging
from typing import Dict, Optional

from config_validation import ConfigValidation
from constants import (
    ADVANCED_PCI_SETTINGS_PARAM,
    MELLANOX_VENDOR,
    NET_CLASS,
    NV_PARAM_TRUE,
)
from errors import HostUtilsError, IncorrectSpecError
from host_utils import HostUtils
from models import NicDevice, NicDevicePort, NicDeviceStatus, NvSpecValidation

logger = logging.getLogger(__name__)


class HostManager:
    """Discovers NIC devices and applies their configuration on the host"""

    def __init__(self, node_name: str, host_utils: HostUtils):
        self.node_name = node_name
        self.host_utils = host_utils
        self.config_validation = ConfigValidation(host_utils)

    def discover_nic_devices(self) -> Dict[str, NicDeviceStatus]:
        """
        Discover Mellanox NICs on the host.

        Returns:
            Dict of serial number -> NicDeviceStatus. Ports of the same card
            share a serial number and are grouped into one status.

        Raises:
            HostUtilsError: PCI listing or identity lookup of a device failed
        """
        logger.info("[DISCOVERY] Discovering NIC devices on node %s",
                    self.node_name)

        pci_devices = self.host_utils.get_pci_devices()

        devices: Dict[str, NicDeviceStatus] = {}

        for pci_device in pci_devices:
            if pci_device.vendor_id != MELLANOX_VENDOR:
                continue

            try:
                device_class = int(pci_device.class_id, 16)
            except ValueError:
                logger.warning(
                    "[DISCOVERY] Unable to parse device class %r of %s, skipping",
                    pci_device.class_id, pci_device.address)
                continue
            if device_class != NET_CLASS:
                logger.debug("Device %s is not a network device, skipping",
                             pci_device.address)
                continue

            if self.host_utils.is_sriov_vf(pci_device.address):
                logger.debug("Device %s is an SR-IOV VF, skipping",
                             pci_device.address)
                continue

            logger.info("[DISCOVERY] Found Mellanox device %s (%s)",
                        pci_device.address, pci_device.product_name)

            part_number, serial_number = self.host_utils.get_part_and_serial_number(
                pci_device.address)

            # Devices with the same serial number are ports of the same NIC
            status = devices.get(serial_number)
            if status is None:
                firmware_version, psid = self.host_utils.get_firmware_version_and_psid(
                    pci_device.address)
                status = NicDeviceStatus(type=pci_device.product_id,
                                         serial_number=serial_number,
                                         part_number=part_number,
                                         psid=psid,
                                         firmware_version=firmware_version)
                devices[serial_number] = status

            status.ports.append(
                NicDevicePort(
                    pci=pci_device.address,
                    network_interface=self.host_utils.get_interface_name(
                        pci_device.address),
                    rdma_interface=self.host_utils.get_rdma_device_name(
                        pci_device.address)))
            status.node = self.node_name

        return devices

    def validate_device_nv_spec(
            self,
            device: NicDevice,
            timeout: Optional[float] = None) -> NvSpecValidation:
        """
        Compare the device's NV spec with the configuration on the host.

        - all desired values current: update_needed=False, reboot_needed=False
        - all desired values staged for next boot, some not current:
          update_needed=False, reboot_needed=True
        - some desired values not staged: update_needed=True, reboot_needed=True

        Raises:
            IncorrectSpecError: the spec references an unsupported parameter
            HostUtilsError: NV configuration could not be queried
        """
        logger.info("[RECONCILE] Validating NV spec of device %s", device.name)

        nv_config = self.host_utils.query_nv_config(device.ports[0].pci,
                                                    timeout=timeout)

        if device.spec.configuration.reset_to_default:
            return self.config_validation.validate_reset_to_default(nv_config)

        # With ADVANCED_PCI_SETTINGS enabled every supported parameter is
        # visible, so unknown parameters are spec errors
        advanced_enabled = self.config_validation.advanced_pci_settings_enabled(
            nv_config.current_config)

        desired_config = self.config_validation.construct_nv_param_map_from_template(
            device, nv_config.default_config, advanced_enabled)

        result = NvSpecValidation()

        for param, desired_value in desired_config.items():
            if advanced_enabled and param not in nv_config.current_config:
                raise IncorrectSpecError(
                    f"Parameter {param} unsupported for device {device.name}")

            if nv_config.next_boot_config.get(param) == desired_value:
                if nv_config.current_config.get(param) != desired_value:
                    result.reboot_needed = True
            else:
                result.update_needed = True
                result.reboot_needed = True

        logger.debug("NV spec validation of device %s: %s", device.name,
                     result)
        return result

    def apply_device_nv_spec(self,
                             device: NicDevice,
                             timeout: Optional[float] = None) -> bool:
        """
        Stage the device's NV spec on the host.

        When ADVANCED_PCI_SETTINGS is disabled it is enabled first and the
        firmware is reset so that the extended parameters become visible.

        Returns:
            True if a reboot is required. Always True once NV configuration
            was evaluated, even if nothing had to be written, since values
            staged by an earlier pass may still wait for a reboot.

        Raises:
            IncorrectSpecError: the spec references an unsupported parameter
            HostUtilsError: a query, write or firmware reset failed
        """
        logger.info("[RECONCILE] Applying NV spec of device %s", device.name)

        pci_address = device.ports[0].pci

        if device.spec.configuration.reset_to_default:
            logger.info("[RECONCILE] Resetting NV config of device %s to default",
                        device.name)
            self.host_utils.reset_nv_config(pci_address)
            self.host_utils.set_nv_config_parameter(
                pci_address, ADVANCED_PCI_SETTINGS_PARAM, NV_PARAM_TRUE)
            return True

        nv_config = self.host_utils.query_nv_config(pci_address,
                                                    timeout=timeout)

        if not self.config_validation.advanced_pci_settings_enabled(
                nv_config.current_config):
            logger.info(
                "[RECONCILE] %s not enabled on device %s, firmware reset required",
                ADVANCED_PCI_SETTINGS_PARAM, device.name)
            self.host_utils.set_nv_config_parameter(
                pci_address, ADVANCED_PCI_SETTINGS_PARAM, NV_PARAM_TRUE)
            self.host_utils.reset_nic_firmware(pci_address, timeout=timeout)

            # Additional parameters could become available after the reset
            nv_config = self.host_utils.query_nv_config(pci_address,
                                                        timeout=timeout)

        advanced_enabled = self.config_validation.advanced_pci_settings_enabled(
            nv_config.current_config)
        desired_config = self.config_validation.construct_nv_param_map_from_template(
            device, nv_config.default_config, advanced_enabled)

        params_to_apply: Dict[str, str] = {}
        for param, value in desired_config.items():
            if (param not in nv_config.next_boot_config or
                    advanced_enabled and
                    param not in nv_config.current_config):
                raise IncorrectSpecError(
                    f"Parameter {param} unsupported for device {device.name}")
            if nv_config.next_boot_config[param] != value:
                params_to_apply[param] = value

        logger.debug("Applying NV config to device %s: %s", device.name,
                     params_to_apply)

        for param, value in params_to_apply.items():
            self.host_utils.set_nv_config_parameter(pci_address, param, value)

        logger.info("[RECONCILE] NV config applied to device %s (%d parameters)",
                    device.name, len(params_to_apply))

        return True

    def apply_device_runtime_spec(self, device: NicDevice) -> None:
        """
        Apply runtime settings (max read request, trust, PFC) to all ports.

        No-op when the host already matches the desired settings. A failure
        on the second port leaves the first port updated; the next pass
        detects the mismatch and retries.
        """
        logger.info("[RECONCILE] Applying runtime spec of device %s",
                    device.name)

        try:
            already_applied = self.config_validation.runtime_config_applied(
                device)
        except HostUtilsError as e:
            logger.error("Failed to verify runtime config of device %s: %s",
                         device.name, e)
            already_applied = False

        if already_applied:
            logger.debug("Runtime config already applied to device %s",
                         device.name)
            return

        desired = self.config_validation.calculate_desired_runtime_config(
            device)
        ports = device.ports

        if desired.max_read_request_size != 0:
            for port in ports[:2]:
                self.host_utils.set_max_read_request_size(
                    port.pci, desired.max_read_request_size)

        for port in ports[:2]:
            self.host_utils.set_trust_and_pfc(port.network_interface,
                                              desired.trust, desired.pfc)
