# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""NicDevice publisher and reconcile loop.

Publishes discovered NICs as NicDevice custom resources (one per serial
number) and drives each device of this node through NV validation, NV apply
and runtime apply. Progress is reported through a ConfigUpdateInProgress
status condition.

The loop never reboots the node: a pending reboot is only reported as a
condition for an external actor.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from kubernetes import client

from constants import (
    CONFIG_UPDATE_IN_PROGRESS_CONDITION,
    FW_RESET_TIMEOUT,
    NIC_DEVICE_GROUP,
    NIC_DEVICE_KIND,
    NIC_DEVICE_PLURAL,
    NIC_DEVICE_VERSION,
    NODE_LABEL,
    REASON_FAILED,
    REASON_INCORRECT_SPEC,
    REASON_PENDING_REBOOT,
    REASON_UPDATE_STARTED,
    REASON_UPDATE_SUCCESSFUL,
    RECONCILE_INTERVAL,
)
from errors import IncorrectSpecError, NicConfigurationError
from host_manager import HostManager
from models import NicDevice, NicDeviceStatus

logger = logging.getLogger(__name__)


def device_name(status: NicDeviceStatus) -> str:
    """NicDevice resource name: '<type>-<serial>', lowercased"""
    return f"{status.type}-{status.serial_number}".lower()


def _build_condition(status: str, reason: str, message: str = "") -> Dict:
    return {
        "type": CONFIG_UPDATE_IN_PROGRESS_CONDITION,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime":
        datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


class NicDeviceStatusCache:
    """Last published status per resource name.

    This daemon is the sole writer of NicDevice statuses on its node, so
    the cache only has to be refreshed from the API server once.
    """

    def __init__(self):
        # resource name -> published status dict (without conditions)
        self.statuses: Dict[str, Dict] = {}
        self.initialized: bool = False


def publish_devices(api: client.CustomObjectsApi, namespace: str,
                    node_name: str, devices: Dict[str, NicDeviceStatus],
                    cache: NicDeviceStatusCache) -> None:
    """Create, update or delete NicDevice CRs to mirror the discovered devices.

    Existing conditions are preserved when a status is replaced.
    Raises client.exceptions.ApiException on API failures.
    """
    existing_objects = _list_node_devices(api, namespace, node_name)
    existing = {obj["metadata"]["name"]: obj for obj in existing_objects}

    if not cache.initialized:
        for name, obj in existing.items():
            status = dict(obj.get("status") or {})
            status.pop("conditions", None)
            cache.statuses[name] = status
        cache.initialized = True

    discovered = {device_name(status): status for status in devices.values()}

    for name, status in discovered.items():
        status_dict = status.to_dict()
        obj = existing.get(name)

        if obj is None:
            body = {
                "apiVersion": f"{NIC_DEVICE_GROUP}/{NIC_DEVICE_VERSION}",
                "kind": NIC_DEVICE_KIND,
                "metadata": {
                    "name": name,
                    "namespace": namespace,
                    "labels": {
                        NODE_LABEL: node_name,
                    },
                },
                "spec": {},
            }
            created = api.create_namespaced_custom_object(
                group=NIC_DEVICE_GROUP,
                version=NIC_DEVICE_VERSION,
                namespace=namespace,
                plural=NIC_DEVICE_PLURAL,
                body=body,
            )
            created["status"] = status_dict
            api.replace_namespaced_custom_object_status(
                group=NIC_DEVICE_GROUP,
                version=NIC_DEVICE_VERSION,
                namespace=namespace,
                plural=NIC_DEVICE_PLURAL,
                name=name,
                body=created,
            )
            cache.statuses[name] = status_dict
            logger.info(
                "[DISCOVERY] Created NicDevice %s (serial %s, %d ports)", name,
                status.serial_number, len(status.ports))
            continue

        if cache.statuses.get(name) == status_dict:
            logger.debug("No changes detected for NicDevice %s (cached)",
                         name)
            continue

        conditions = (obj.get("status") or {}).get("conditions")
        if conditions:
            obj["status"] = dict(status_dict, conditions=conditions)
        else:
            obj["status"] = status_dict
        api.replace_namespaced_custom_object_status(
            group=NIC_DEVICE_GROUP,
            version=NIC_DEVICE_VERSION,
            namespace=namespace,
            plural=NIC_DEVICE_PLURAL,
            name=name,
            body=obj,
        )
        cache.statuses[name] = status_dict
        logger.info("[DISCOVERY] Updated status of NicDevice %s", name)

    for name in set(existing) - set(discovered):
        try:
            api.delete_namespaced_custom_object(
                group=NIC_DEVICE_GROUP,
                version=NIC_DEVICE_VERSION,
                namespace=namespace,
                plural=NIC_DEVICE_PLURAL,
                name=name,
            )
            logger.info("[DISCOVERY] Deleted NicDevice %s (device removed)",
                        name)
        except client.exceptions.ApiException as e:
            if e.status != 404:
                raise
        cache.statuses.pop(name, None)


def _list_node_devices(api: client.CustomObjectsApi, namespace: str,
                       node_name: str) -> List[Dict]:
    result = api.list_namespaced_custom_object(
        group=NIC_DEVICE_GROUP,
        version=NIC_DEVICE_VERSION,
        namespace=namespace,
        plural=NIC_DEVICE_PLURAL,
        label_selector=f"{NODE_LABEL}={node_name}",
    )
    return result.get("items", [])


class DeviceReconciler:
    """
    Periodically discovers NICs and reconciles every NicDevice of this node.

    Devices are processed one at a time, which serializes all host access
    for a given device.
    """

    def __init__(self,
                 api: client.CustomObjectsApi,
                 host_manager: HostManager,
                 node_name: str,
                 namespace: str,
                 interval: float = RECONCILE_INTERVAL,
                 timeout: Optional[float] = FW_RESET_TIMEOUT):
        """
        Initialize the reconciler.

        Args:
            api: Kubernetes CustomObjectsApi client
            host_manager: HostManager bound to this node
            node_name: Name of the node this daemon runs on
            namespace: Namespace holding NicDevice resources
            interval: Seconds between reconcile passes
            timeout: Timeout for NV queries and firmware resets
        """
        self.api = api
        self.host_manager = host_manager
        self.node_name = node_name
        self.namespace = namespace
        self.interval = interval
        self.timeout = timeout
        self.cache = NicDeviceStatusCache()
        self.running = False

    def reconcile_device(self, device: NicDevice) -> Optional[Dict]:
        """
        Reconcile a single device and return the resulting condition.

        Validation decides whether NV work is needed. Runtime settings are
        only applied once no reboot is pending, since the NV configuration
        they depend on is not active yet.

        Devices without a declared configuration are left untouched and
        None is returned.
        """
        if device.spec.configuration is None:
            logger.debug("NicDevice %s has no configuration, skipping",
                         device.name)
            return None

        try:
            validation = self.host_manager.validate_device_nv_spec(
                device, timeout=self.timeout)

            if validation.update_needed:
                logger.info("[RECONCILE] NV config update needed for %s",
                            device.name)
                if self.host_manager.apply_device_nv_spec(
                        device, timeout=self.timeout):
                    return _build_condition(
                        "True", REASON_PENDING_REBOOT,
                        "NV configuration staged, reboot required")
                # Unreachable while apply always requests a reboot
                return _build_condition("True", REASON_UPDATE_STARTED)

            if validation.reboot_needed:
                logger.info("[RECONCILE] Device %s waits for reboot",
                            device.name)
                return _build_condition(
                    "True", REASON_PENDING_REBOOT,
                    "NV configuration staged, reboot required")

            self.host_manager.apply_device_runtime_spec(device)
            return _build_condition("False", REASON_UPDATE_SUCCESSFUL)

        except IncorrectSpecError as e:
            logger.error("[RECONCILE] Incorrect spec for device %s: %s",
                         device.name, e)
            return _build_condition("False", REASON_INCORRECT_SPEC, str(e))
        except NicConfigurationError as e:
            logger.error("[RECONCILE] Failed to reconcile device %s: %s",
                         device.name, e)
            return _build_condition("False", REASON_FAILED, str(e))

    def _update_condition(self, obj: Dict, condition: Dict) -> None:
        status = obj.setdefault("status", {})
        conditions = [
            c for c in status.get("conditions") or []
            if c.get("type") != condition["type"]
        ]
        previous = next((c for c in status.get("conditions") or []
                         if c.get("type") == condition["type"]), None)
        if previous and all(
                previous.get(k) == condition[k]
                for k in ("status", "reason", "message")):
            # Unchanged, keep the original transition time
            return
        conditions.append(condition)
        status["conditions"] = conditions
        self.api.replace_namespaced_custom_object_status(
            group=NIC_DEVICE_GROUP,
            version=NIC_DEVICE_VERSION,
            namespace=self.namespace,
            plural=NIC_DEVICE_PLURAL,
            name=obj["metadata"]["name"],
            body=obj,
        )

    def run_once(self) -> None:
        """One pass: discover, publish, then reconcile every device"""
        devices = self.host_manager.discover_nic_devices()
        publish_devices(self.api, self.namespace, self.node_name, devices,
                        self.cache)

        for obj in _list_node_devices(self.api, self.namespace,
                                      self.node_name):
            device = NicDevice.from_dict(obj)
            if not device.ports:
                logger.debug("NicDevice %s has no ports yet, skipping",
                             device.name)
                continue
            condition = self.reconcile_device(device)
            if condition is None:
                continue
            self._update_condition(obj, condition)

    def run(self) -> None:
        """Main reconcile loop"""
        self.running = True
        logger.info("[INIT] Reconciling NIC devices on node %s every %ss",
                    self.node_name, self.interval)
        while self.running:
            try:
                self.run_once()
            except client.exceptions.ApiException as e:
                logger.error("[RECONCILE] API error in reconcile loop: %s", e)
            except NicConfigurationError as e:
                logger.error("[RECONCILE] Discovery failed: %s", e)
            except Exception as e:
                logger.error("[RECONCILE] Error in reconcile loop: %s",
                             e,
                             exc_info=True)

            time.sleep(self.interval)

    def stop(self) -> None:
        self.running = False
