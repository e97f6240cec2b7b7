# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
Constants and configuration for the NIC configuration daemon.

This module contains all constants used across the application:
- PCI identification of managed devices
- Non-volatile (NV) firmware parameter names and values
- Runtime configuration defaults
- NicDevice CR configuration
- Host paths and tool timeouts
"""

from pathlib import Path

# ============================================================================
# PCI Identification
# ============================================================================
MELLANOX_VENDOR = "15b3"

# Network controller PCI base class
NET_CLASS = 0x02

# ============================================================================
# NV Configuration Parameters
# ============================================================================
# Values are normalized to the numeric token printed by mstconfig,
# e.g. "True(1)" -> "1", "ETH(2)" -> "2"
NV_PARAM_TRUE = "1"
NV_PARAM_FALSE = "0"

# Gate that exposes the extended PCI parameter set
ADVANCED_PCI_SETTINGS_PARAM = "ADVANCED_PCI_SETTINGS"

SRIOV_ENABLED_PARAM = "SRIOV_EN"
SRIOV_NUM_OF_VFS_PARAM = "NUM_OF_VFS"
LINK_TYPE_P1_PARAM = "LINK_TYPE_P1"
LINK_TYPE_P2_PARAM = "LINK_TYPE_P2"
MAX_ACC_OUT_READ_PARAM = "MAX_ACC_OUT_READ"
ROCE_CC_PRIO_MASK_P1_PARAM = "ROCE_CC_PRIO_MASK_P1"
ROCE_CC_PRIO_MASK_P2_PARAM = "ROCE_CC_PRIO_MASK_P2"
CNP_DSCP_P1_PARAM = "CNP_DSCP_P1"
CNP_DSCP_P2_PARAM = "CNP_DSCP_P2"
CNP_802P_PRIO_P1_PARAM = "CNP_802P_PRIO_P1"
CNP_802P_PRIO_P2_PARAM = "CNP_802P_PRIO_P2"
ATS_ENABLED_PARAM = "ATS_ENABLED"

# Raw parameters with this suffix only apply to the second port
SECOND_PORT_SUFFIX = "_P2"

# Link type names from the CR -> NV parameter values
LINK_TYPE_INFINIBAND = "Infiniband"
LINK_TYPE_ETHERNET = "Ethernet"
NV_LINK_TYPE_VALUES = {
    LINK_TYPE_INFINIBAND: "1",
    LINK_TYPE_ETHERNET: "2",
}

# MAX_ACC_OUT_READ recommendations per PCIe link speed (GT/s)
MAX_ACC_OUT_READ_BY_LINK_SPEED = {
    16: "44",  # Gen4
    32: "0",  # Gen5
}

ROCE_CC_PRIO_MASK_VALUE = "255"
CNP_DSCP_VALUE = "4"
CNP_802P_PRIO_VALUE = "6"

ENV_BAREMETAL = "Baremetal"

# ============================================================================
# Runtime Configuration Defaults
# ============================================================================
DEFAULT_MAX_READ_REQUEST_SIZE = 4096

DEFAULT_TRUST = "pcp"
DEFAULT_PFC = "0,0,0,0,0,0,0,0"
ROCE_TRUST = "dscp"
ROCE_PFC = "0,0,0,1,0,0,0,0"

# ============================================================================
# NicDevice CR Configuration
# ============================================================================
NIC_DEVICE_GROUP = "configuration.net.nvidia.com"
NIC_DEVICE_VERSION = "v1alpha1"
NIC_DEVICE_PLURAL = "nicdevices"
NIC_DEVICE_KIND = "NicDevice"
NIC_DEVICE_NAMESPACE = "nvidia-network-operator"

# Label used to select devices belonging to a node
NODE_LABEL = "configuration.net.nvidia.com/node"

# Status condition written by the reconcile loop
CONFIG_UPDATE_IN_PROGRESS_CONDITION = "ConfigUpdateInProgress"
REASON_INCORRECT_SPEC = "IncorrectSpec"
REASON_PENDING_REBOOT = "PendingReboot"
REASON_UPDATE_SUCCESSFUL = "UpdateSuccessful"
REASON_UPDATE_STARTED = "UpdateStarted"
REASON_FAILED = "Failed"

# ============================================================================
# Reconcile Loop Configuration
# ============================================================================
# How often to rescan devices and reconcile them (seconds)
RECONCILE_INTERVAL = 60

# ============================================================================
# Host Configuration
# ============================================================================
SYSFS_PCI_DEVICES_PATH = Path("/sys/bus/pci/devices")

# Timeout for NV queries and firmware resets (seconds)
FW_RESET_TIMEOUT = 300.0
