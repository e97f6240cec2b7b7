# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
Data models for the NIC configuration daemon.

This module contains:
- Host-side records (PciDevice, NvConfig, RuntimeConfig)
- NicDevice custom resource model (spec, template, status, ports)
- Result of NV spec validation (NvSpecValidation)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

# ============================================================================
# Host Records
# ============================================================================


@dataclass
class PciDevice:
    """PCI function as reported by the host"""
    address: str  # e.g., "0000:3b:00.0"
    vendor_id: str  # e.g., "15b3"
    class_id: str  # hex base class, e.g., "02"
    product_id: str  # e.g., "1017"
    product_name: str = ""


@dataclass
class NvConfig:
    """Non-volatile configuration of a device: parameter name -> value"""
    current_config: Dict[str, str] = field(default_factory=dict)
    next_boot_config: Dict[str, str] = field(default_factory=dict)
    default_config: Dict[str, str] = field(default_factory=dict)


@dataclass
class RuntimeConfig:
    """Runtime (no reboot) settings of a device"""
    max_read_request_size: int = 0  # 0 = leave untouched
    trust: str = ""
    pfc: str = ""  # per-priority enable flags, e.g., "0,0,0,1,0,0,0,0"


@dataclass
class NvSpecValidation:
    """Outcome of comparing a device's NV configuration with its spec"""
    update_needed: bool = False
    reboot_needed: bool = False


# ============================================================================
# NicDevice Spec
# ============================================================================


@dataclass
class PciPerformanceOptimizations:
    enabled: bool = False
    max_acc_out_read: int = 0
    max_read_request: int = 0


@dataclass
class QosSpec:
    trust: str = ""
    pfc: str = ""


@dataclass
class RoceOptimized:
    enabled: bool = False
    qos: Optional[QosSpec] = None


@dataclass
class GpuDirectOptimized:
    enabled: bool = False
    env: str = ""


@dataclass
class NvConfigParam:
    name: str
    value: str


@dataclass
class NicConfigurationTemplate:
    """Declared configuration of a NIC, as found in the NicDevice spec"""
    num_vfs: int = 0
    link_type: str = ""  # "Ethernet", "Infiniband" or empty
    pci_performance_optimizations: Optional[PciPerformanceOptimizations] = None
    roce_optimized: Optional[RoceOptimized] = None
    gpu_direct_optimized: Optional[GpuDirectOptimized] = None
    raw_nv_config: List[NvConfigParam] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'NicConfigurationTemplate':
        """Build a template from the camelCase dict of a NicDevice CR"""
        data = data or {}

        pci_perf = None
        if data.get('pciPerformanceOptimizations') is not None:
            raw = data['pciPerformanceOptimizations']
            pci_perf = PciPerformanceOptimizations(
                enabled=bool(raw.get('enabled', False)),
                max_acc_out_read=int(raw.get('maxAccOutRead', 0) or 0),
                max_read_request=int(raw.get('maxReadRequest', 0) or 0))

        roce = None
        if data.get('roceOptimized') is not None:
            raw = data['roceOptimized']
            qos = None
            if raw.get('qos') is not None:
                qos = QosSpec(trust=raw['qos'].get('trust', ''),
                              pfc=raw['qos'].get('pfc', ''))
            roce = RoceOptimized(enabled=bool(raw.get('enabled', False)),
                                 qos=qos)

        gpu_direct = None
        if data.get('gpuDirectOptimized') is not None:
            raw = data['gpuDirectOptimized']
            gpu_direct = GpuDirectOptimized(enabled=bool(
                raw.get('enabled', False)),
                                            env=raw.get('env', ''))

        raw_nv_config = [
            NvConfigParam(name=p['name'], value=str(p['value']))
            for p in data.get('rawNvConfig') or []
        ]

        return cls(num_vfs=int(data.get('numVfs', 0) or 0),
                   link_type=data.get('linkType', '') or '',
                   pci_performance_optimizations=pci_perf,
                   roce_optimized=roce,
                   gpu_direct_optimized=gpu_direct,
                   raw_nv_config=raw_nv_config)


@dataclass
class NicDeviceConfigurationSpec:
    reset_to_default: bool = False
    template: NicConfigurationTemplate = field(
        default_factory=NicConfigurationTemplate)


@dataclass
class NicDeviceSpec:
    # None until a configuration is declared on the resource
    configuration: Optional[NicDeviceConfigurationSpec] = None


# ============================================================================
# NicDevice Status
# ============================================================================


@dataclass
class NicDevicePort:
    """One physical function of a NIC"""
    pci: str
    network_interface: str = ""
    rdma_interface: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "pci": self.pci,
            "networkInterface": self.network_interface,
            "rdmaInterface": self.rdma_interface,
        }


@dataclass
class NicDeviceStatus:
    """
    Discovered state of a physical NIC.

    Ports of a multi-port card share the serial number and are grouped
    into one status; the first discovered port is port 0.
    """
    type: str
    serial_number: str
    part_number: str
    psid: str
    firmware_version: str
    node: str = ""
    ports: List[NicDevicePort] = field(default_factory=list)
    conditions: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        status = {
            "node": self.node,
            "type": self.type,
            "serialNumber": self.serial_number,
            "partNumber": self.part_number,
            "psid": self.psid,
            "firmwareVersion": self.firmware_version,
            "ports": [port.to_dict() for port in self.ports],
        }
        if self.conditions:
            status["conditions"] = self.conditions
        return status

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'NicDeviceStatus':
        data = data or {}
        return cls(type=data.get('type', ''),
                   serial_number=data.get('serialNumber', ''),
                   part_number=data.get('partNumber', ''),
                   psid=data.get('psid', ''),
                   firmware_version=data.get('firmwareVersion', ''),
                   node=data.get('node', ''),
                   ports=[
                       NicDevicePort(pci=p.get('pci', ''),
                                     network_interface=p.get(
                                         'networkInterface', ''),
                                     rdma_interface=p.get('rdmaInterface',
                                                          ''))
                       for p in data.get('ports') or []
                   ],
                   conditions=list(data.get('conditions') or []))


@dataclass
class NicDevice:
    """NicDevice custom resource: declared spec plus discovered status"""
    name: str
    status: NicDeviceStatus
    spec: NicDeviceSpec = field(default_factory=NicDeviceSpec)
    namespace: str = ""

    @property
    def ports(self) -> List[NicDevicePort]:
        return self.status.ports

    @classmethod
    def from_dict(cls, obj: Dict) -> 'NicDevice':
        """Build a NicDevice from a custom object returned by the API server"""
        metadata = obj.get('metadata', {})
        configuration = (obj.get('spec') or {}).get('configuration')
        spec = NicDeviceSpec()
        if configuration is not None:
            spec.configuration = NicDeviceConfigurationSpec(
                reset_to_default=bool(
                    configuration.get('resetToDefault', False)),
                template=NicConfigurationTemplate.from_dict(
                    configuration.get('template')))
        return cls(name=metadata.get('name', ''),
                   namespace=metadata.get('namespace', ''),
                   spec=spec,
                   status=NicDeviceStatus.from_dict(obj.get('status')))
