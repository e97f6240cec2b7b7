# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""Tests for desired NV and runtime configuration calculation."""

import pytest

from config_validation import ConfigValidation
from conftest import make_device, nv_config
from errors import IncorrectSpecError
from models import (
    GpuDirectOptimized,
    NicConfigurationTemplate,
    NvConfigParam,
    NvSpecValidation,
    PciPerformanceOptimizations,
    QosSpec,
    RoceOptimized,
    RuntimeConfig,
)

ALL_PARAMS = {
    name: "0"
    for name in (
        "ADVANCED_PCI_SETTINGS",
        "SRIOV_EN",
        "NUM_OF_VFS",
        "LINK_TYPE_P1",
        "LINK_TYPE_P2",
        "MAX_ACC_OUT_READ",
        "ROCE_CC_PRIO_MASK_P1",
        "ROCE_CC_PRIO_MASK_P2",
        "CNP_DSCP_P1",
        "CNP_DSCP_P2",
        "CNP_802P_PRIO_P1",
        "CNP_802P_PRIO_P2",
        "ATS_ENABLED",
        "KEEP_ETH_LINK_UP_P1",
        "KEEP_ETH_LINK_UP_P2",
    )
}


def test_default_template_disables_sriov(host_utils) -> None:
    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(), ALL_PARAMS)

    assert desired == {"SRIOV_EN": "0", "NUM_OF_VFS": "0"}


def test_full_template_dual_port(host_utils) -> None:
    template = NicConfigurationTemplate(
        num_vfs=4,
        link_type="Infiniband",
        pci_performance_optimizations=PciPerformanceOptimizations(
            enabled=True, max_acc_out_read=32),
        roce_optimized=RoceOptimized(enabled=True),
        gpu_direct_optimized=GpuDirectOptimized(enabled=True,
                                                env="Baremetal"))

    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)

    assert desired == {
        "SRIOV_EN": "1",
        "NUM_OF_VFS": "4",
        "LINK_TYPE_P1": "1",
        "LINK_TYPE_P2": "1",
        "MAX_ACC_OUT_READ": "32",
        "ROCE_CC_PRIO_MASK_P1": "255",
        "ROCE_CC_PRIO_MASK_P2": "255",
        "CNP_DSCP_P1": "4",
        "CNP_DSCP_P2": "4",
        "CNP_802P_PRIO_P1": "6",
        "CNP_802P_PRIO_P2": "6",
        "ATS_ENABLED": "0",
    }


def test_single_port_skips_second_port_parameters(host_utils) -> None:
    template = NicConfigurationTemplate(
        link_type="Ethernet",
        roce_optimized=RoceOptimized(enabled=True),
        raw_nv_config=[
            NvConfigParam(name="KEEP_ETH_LINK_UP_P1", value="1"),
            NvConfigParam(name="KEEP_ETH_LINK_UP_P2", value="1"),
        ])

    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(template, ports=1), ALL_PARAMS)

    assert not [name for name in desired if name.endswith("_P2")]
    assert desired["LINK_TYPE_P1"] == "2"
    assert desired["KEEP_ETH_LINK_UP_P1"] == "1"


def test_raw_parameters_override_template(host_utils) -> None:
    template = NicConfigurationTemplate(
        num_vfs=8, raw_nv_config=[NvConfigParam(name="NUM_OF_VFS", value="2")])

    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)

    assert desired["NUM_OF_VFS"] == "2"


@pytest.mark.parametrize("link_speed, expected", [(16, "44"), (32, "0")])
def test_max_acc_out_read_follows_link_speed(host_utils, link_speed,
                                             expected) -> None:
    host_utils.link_speed = link_speed
    template = NicConfigurationTemplate(
        pci_performance_optimizations=PciPerformanceOptimizations(
            enabled=True))

    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)

    assert desired["MAX_ACC_OUT_READ"] == expected
    assert ('get_pci_link_speed', "0000:3b:00.0") in host_utils.calls


def test_max_acc_out_read_unset_for_older_links(host_utils) -> None:
    host_utils.link_speed = 8
    template = NicConfigurationTemplate(
        pci_performance_optimizations=PciPerformanceOptimizations(
            enabled=True))

    desired = ConfigValidation(
        host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)

    assert "MAX_ACC_OUT_READ" not in desired


def test_gpu_direct_requires_baremetal(host_utils) -> None:
    template = NicConfigurationTemplate(
        pci_performance_optimizations=PciPerformanceOptimizations(
            enabled=True, max_acc_out_read=44),
        gpu_direct_optimized=GpuDirectOptimized(enabled=True, env="VM"))

    with pytest.raises(IncorrectSpecError, match="Baremetal"):
        ConfigValidation(host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)


def test_gpu_direct_requires_pci_performance(host_utils) -> None:
    template = NicConfigurationTemplate(gpu_direct_optimized=GpuDirectOptimized(
        enabled=True, env="Baremetal"))

    with pytest.raises(IncorrectSpecError,
                       match="PciPerformanceOptimizations"):
        ConfigValidation(host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)


def test_unknown_link_type(host_utils) -> None:
    template = NicConfigurationTemplate(link_type="Ethernet2")

    with pytest.raises(IncorrectSpecError, match="link type"):
        ConfigValidation(host_utils).construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)


def test_parameter_missing_from_defaults(host_utils) -> None:
    template = NicConfigurationTemplate(
        raw_nv_config=[NvConfigParam(name="NOT_A_PARAM", value="1")])
    validation = ConfigValidation(host_utils)

    with pytest.raises(IncorrectSpecError, match="NOT_A_PARAM"):
        validation.construct_nv_param_map_from_template(
            make_device(template), ALL_PARAMS)

    desired = validation.construct_nv_param_map_from_template(
        make_device(template),
        ALL_PARAMS,
        advanced_pci_settings_enabled=False)
    assert desired["NOT_A_PARAM"] == "1"


def test_advanced_pci_settings_enabled(host_utils) -> None:
    validation = ConfigValidation(host_utils)

    assert validation.advanced_pci_settings_enabled(
        {"ADVANCED_PCI_SETTINGS": "1"})
    assert not validation.advanced_pci_settings_enabled(
        {"ADVANCED_PCI_SETTINGS": "0"})
    assert not validation.advanced_pci_settings_enabled({})


def test_runtime_defaults(host_utils) -> None:
    desired = ConfigValidation(host_utils).calculate_desired_runtime_config(
        make_device())

    assert desired == RuntimeConfig(max_read_request_size=0,
                                    trust="pcp",
                                    pfc="0,0,0,0,0,0,0,0")


def test_runtime_optimized(host_utils) -> None:
    template = NicConfigurationTemplate(
        pci_performance_optimizations=PciPerformanceOptimizations(
            enabled=True, max_read_request=1024),
        roce_optimized=RoceOptimized(enabled=True,
                                     qos=QosSpec(trust="pcp",
                                                 pfc="0,0,0,0,1,0,0,0")))

    desired = ConfigValidation(host_utils).calculate_desired_runtime_config(
        make_device(template))

    assert desired == RuntimeConfig(max_read_request_size=1024,
                                    trust="pcp",
                                    pfc="0,0,0,0,1,0,0,0")


def test_runtime_config_applied_checks_every_port(host_utils) -> None:
    host_utils.qos = {
        "enp59s0f0np0": ("pcp", "0,0,0,0,0,0,0,0"),
        "enp59s0f1np1": ("dscp", "0,0,0,0,0,0,0,0"),
    }
    validation = ConfigValidation(host_utils)

    assert not validation.runtime_config_applied(make_device())

    host_utils.qos["enp59s0f1np1"] = ("pcp", "0,0,0,0,0,0,0,0")
    assert validation.runtime_config_applied(make_device())


def test_reset_to_default_ignores_gate_parameter(host_utils) -> None:
    default = {"ADVANCED_PCI_SETTINGS": "0", "NUM_OF_VFS": "0"}
    config = nv_config(current={
        "ADVANCED_PCI_SETTINGS": "1",
        "NUM_OF_VFS": "0"
    },
                       default=default)

    result = ConfigValidation(host_utils).validate_reset_to_default(config)

    assert result == NvSpecValidation(update_needed=False,
                                      reboot_needed=False)
    assert config.current_config["ADVANCED_PCI_SETTINGS"] == "1"


def test_reset_to_default_requested(host_utils) -> None:
    config = nv_config(current={"NUM_OF_VFS": "8"},
                       next_boot={"NUM_OF_VFS": "0"},
                       default={"NUM_OF_VFS": "0"})

    result = ConfigValidation(host_utils).validate_reset_to_default(config)

    assert result == NvSpecValidation(update_needed=False, reboot_needed=True)


def test_reset_to_default_not_requested(host_utils) -> None:
    config = nv_config(current={"NUM_OF_VFS": "8"},
                       default={"NUM_OF_VFS": "0"})

    result = ConfigValidation(host_utils).validate_reset_to_default(config)

    assert result == NvSpecValidation(update_needed=True, reboot_needed=True)
