# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
Configuration calculator for NIC devices.

Translates a NicDevice configuration template into:
- the desired NV parameter map (parameter name -> value)
- the desired runtime configuration (max read request, trust, pfc)

Also checks whether runtime or reset-to-default configuration is already
in place on the host.
"""

import logging
from typing import Dict

from constants import (
    ADVANCED_PCI_SETTINGS_PARAM,
    ATS_ENABLED_PARAM,
    CNP_802P_PRIO_P1_PARAM,
    CNP_802P_PRIO_P2_PARAM,
    CNP_802P_PRIO_VALUE,
    CNP_DSCP_P1_PARAM,
    CNP_DSCP_P2_PARAM,
    CNP_DSCP_VALUE,
    DEFAULT_MAX_READ_REQUEST_SIZE,
    DEFAULT_PFC,
    DEFAULT_TRUST,
    ENV_BAREMETAL,
    LINK_TYPE_P1_PARAM,
    LINK_TYPE_P2_PARAM,
    MAX_ACC_OUT_READ_BY_LINK_SPEED,
    MAX_ACC_OUT_READ_PARAM,
    NV_LINK_TYPE_VALUES,
    NV_PARAM_FALSE,
    NV_PARAM_TRUE,
    ROCE_CC_PRIO_MASK_P1_PARAM,
    ROCE_CC_PRIO_MASK_P2_PARAM,
    ROCE_CC_PRIO_MASK_VALUE,
    ROCE_PFC,
    ROCE_TRUST,
    SECOND_PORT_SUFFIX,
    SRIOV_ENABLED_PARAM,
    SRIOV_NUM_OF_VFS_PARAM,
)
from errors import IncorrectSpecError
from host_utils import HostUtils
from models import NicDevice, NvConfig, NvSpecValidation, RuntimeConfig

logger = logging.getLogger(__name__)


class ConfigValidation:
    """Computes desired configuration of a device from its spec"""

    def __init__(self, host_utils: HostUtils):
        self.host_utils = host_utils

    def construct_nv_param_map_from_template(
            self,
            device: NicDevice,
            default_config: Dict[str, str],
            advanced_pci_settings_enabled: bool = True) -> Dict[str, str]:
        """
        Build the desired NV parameter map for a device.

        Args:
            device: NicDevice with a configuration template and discovered ports
            default_config: Factory default NV values of the device. Its keys
                            are the parameters the device supports.
            advanced_pci_settings_enabled: Whether the device currently exposes
                            its full parameter set. When False, parameters
                            missing from default_config are kept since they
                            may appear once the gate is enabled.

        Returns:
            Dict of parameter name -> desired value

        Raises:
            IncorrectSpecError: template is invalid or references a parameter
                                the device does not support
        """
        desired: Dict[str, str] = {}
        template = device.spec.configuration.template
        second_port_present = len(device.ports) > 1

        desired[SRIOV_ENABLED_PARAM] = NV_PARAM_FALSE
        desired[SRIOV_NUM_OF_VFS_PARAM] = "0"
        if template.num_vfs > 0:
            desired[SRIOV_ENABLED_PARAM] = NV_PARAM_TRUE
            desired[SRIOV_NUM_OF_VFS_PARAM] = str(template.num_vfs)

        if template.link_type:
            link_type = NV_LINK_TYPE_VALUES.get(template.link_type)
            if link_type is None:
                raise IncorrectSpecError(
                    f"Unknown link type {template.link_type} for device {device.name}"
                )
            desired[LINK_TYPE_P1_PARAM] = link_type
            if second_port_present:
                desired[LINK_TYPE_P2_PARAM] = link_type

        pci_perf = template.pci_performance_optimizations
        if pci_perf is not None and pci_perf.enabled:
            if pci_perf.max_acc_out_read:
                desired[MAX_ACC_OUT_READ_PARAM] = str(pci_perf.max_acc_out_read)
            else:
                # Pick the recommended value for the PCIe generation
                link_speed = self.host_utils.get_pci_link_speed(
                    device.ports[0].pci)
                value = MAX_ACC_OUT_READ_BY_LINK_SPEED.get(link_speed)
                if value is not None:
                    desired[MAX_ACC_OUT_READ_PARAM] = value
                else:
                    logger.debug(
                        "No MAX_ACC_OUT_READ recommendation for %d GT/s link, device %s",
                        link_speed, device.name)
            # max read request is runtime configuration

        roce = template.roce_optimized
        if roce is not None and roce.enabled:
            desired[ROCE_CC_PRIO_MASK_P1_PARAM] = ROCE_CC_PRIO_MASK_VALUE
            desired[CNP_DSCP_P1_PARAM] = CNP_DSCP_VALUE
            desired[CNP_802P_PRIO_P1_PARAM] = CNP_802P_PRIO_VALUE
            if second_port_present:
                desired[ROCE_CC_PRIO_MASK_P2_PARAM] = ROCE_CC_PRIO_MASK_VALUE
                desired[CNP_DSCP_P2_PARAM] = CNP_DSCP_VALUE
                desired[CNP_802P_PRIO_P2_PARAM] = CNP_802P_PRIO_VALUE
            # qos settings are runtime configuration

        gpu_direct = template.gpu_direct_optimized
        if gpu_direct is not None and gpu_direct.enabled:
            if gpu_direct.env != ENV_BAREMETAL:
                raise IncorrectSpecError(
                    f"GpuDirectOptimized supports only {ENV_BAREMETAL} env, device {device.name}"
                )
            if pci_perf is None or not pci_perf.enabled:
                raise IncorrectSpecError(
                    f"GpuDirectOptimized requires PciPerformanceOptimizations to be enabled, device {device.name}"
                )
            desired[ATS_ENABLED_PARAM] = NV_PARAM_FALSE

        for raw_param in template.raw_nv_config:
            if raw_param.name.endswith(
                    SECOND_PORT_SUFFIX) and not second_port_present:
                logger.debug(
                    "Ignoring second port parameter %s for single port device %s",
                    raw_param.name, device.name)
                continue
            desired[raw_param.name] = raw_param.value

        if advanced_pci_settings_enabled:
            for param in desired:
                if param not in default_config:
                    raise IncorrectSpecError(
                        f"Parameter {param} unsupported for device {device.name}"
                    )

        return desired

    def advanced_pci_settings_enabled(self,
                                      current_config: Dict[str, str]) -> bool:
        return current_config.get(ADVANCED_PCI_SETTINGS_PARAM) == NV_PARAM_TRUE

    def calculate_desired_runtime_config(self,
                                         device: NicDevice) -> RuntimeConfig:
        """
        Compute desired runtime settings.

        Max read request size is 0 (left untouched) unless PCI performance
        optimizations are enabled. Trust and PFC default to pcp / all
        disabled unless RoCE optimizations are enabled.
        """
        template = device.spec.configuration.template
        desired = RuntimeConfig(max_read_request_size=0,
                                trust=DEFAULT_TRUST,
                                pfc=DEFAULT_PFC)

        pci_perf = template.pci_performance_optimizations
        if pci_perf is not None and pci_perf.enabled:
            desired.max_read_request_size = (pci_perf.max_read_request or
                                             DEFAULT_MAX_READ_REQUEST_SIZE)

        roce = template.roce_optimized
        if roce is not None and roce.enabled:
            desired.trust = ROCE_TRUST
            desired.pfc = ROCE_PFC
            if roce.qos is not None:
                desired.trust = roce.qos.trust or ROCE_TRUST
                desired.pfc = roce.qos.pfc or ROCE_PFC

        return desired

    def runtime_config_applied(self, device: NicDevice) -> bool:
        """Check if every port already runs with the desired runtime settings"""
        desired = self.calculate_desired_runtime_config(device)

        for port in device.ports:
            if desired.max_read_request_size != 0:
                actual_size = self.host_utils.get_max_read_request_size(
                    port.pci)
                if actual_size != desired.max_read_request_size:
                    logger.debug("Max read request size %d != %d on %s",
                                 actual_size, desired.max_read_request_size,
                                 port.pci)
                    return False

            actual_trust, actual_pfc = self.host_utils.get_trust_and_pfc(
                port.network_interface)
            if actual_trust != desired.trust or actual_pfc != desired.pfc:
                logger.debug("Trust/PFC %s/%s != %s/%s on %s", actual_trust,
                             actual_pfc, desired.trust, desired.pfc,
                             port.network_interface)
                return False

        return True

    def validate_reset_to_default(self,
                                  nv_config: NvConfig) -> NvSpecValidation:
        """
        Check progress of a reset to factory defaults.

        ADVANCED_PCI_SETTINGS is re-enabled after every reset and never
        matches its default, so it is left out of the comparison.
        """

        def without_gate(config: Dict[str, str]) -> Dict[str, str]:
            return {
                k: v
                for k, v in config.items() if k != ADVANCED_PCI_SETTINGS_PARAM
            }

        default = without_gate(nv_config.default_config)

        if without_gate(nv_config.current_config) == default:
            return NvSpecValidation(update_needed=False, reboot_needed=False)
        if without_gate(nv_config.next_boot_config) == default:
            return NvSpecValidation(update_needed=False, reboot_needed=True)
        return NvSpecValidation(update_needed=True, reboot_needed=True)
