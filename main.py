#!/usr/bin/env python3
# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
NIC Configuration Daemon - Entry Point

Runs on every node as a daemonset. Parses command-line arguments, loads the
Kubernetes configuration and starts the NicDevice reconcile loop.
"""

import argparse
import logging
import os
import socket
import sys

from kubernetes import client, config

import constants
from device_controller import DeviceReconciler
from host_manager import HostManager
from host_utils import HostUtils

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=
        "Discover NVIDIA/Mellanox NICs on this node, publish them as NicDevice "
        "resources and reconcile their firmware and runtime configuration")
    parser.add_argument(
        '--node-name',
        default=os.environ.get('NODE_NAME', ''),
        help='Name of this node (default: $NODE_NAME, then hostname)')
    parser.add_argument(
        '--namespace',
        default=os.environ.get('NAMESPACE', constants.NIC_DEVICE_NAMESPACE),
        help='Namespace of NicDevice resources (default: $NAMESPACE or %s)' %
        constants.NIC_DEVICE_NAMESPACE)
    parser.add_argument('--interval',
                        type=float,
                        default=constants.RECONCILE_INTERVAL,
                        help='Seconds between reconcile passes (default: %d)' %
                        constants.RECONCILE_INTERVAL)
    parser.add_argument(
        '--timeout',
        type=float,
        default=constants.FW_RESET_TIMEOUT,
        help='Timeout for NV queries and firmware resets (default: %d)' %
        constants.FW_RESET_TIMEOUT)
    parser.add_argument('--once',
                        action='store_true',
                        help='Run a single reconcile pass and exit')
    parser.add_argument('--log-level',
                        default='info',
                        choices=[
                            'debug', 'info', 'warning', 'error', 'DEBUG',
                            'INFO', 'WARNING', 'ERROR'
                        ],
                        help='Log level (default: info)')
    return parser.parse_args(argv)


def load_kubernetes_config() -> None:
    try:
        config.load_incluster_config()
        logger.info("[INIT] Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("[INIT] Loaded kubeconfig")


def main(argv=None):
    """Main entry point for the NIC configuration daemon."""
    args = parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper()),
                        format='%(asctime)s [%(levelname)s] %(message)s',
                        handlers=[logging.StreamHandler(sys.stdout)])

    # Suppress verbose Kubernetes client logs
    logging.getLogger('kubernetes').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    node_name = args.node_name
    if not node_name:
        node_name = socket.gethostname()
        logger.warning("[INIT] NODE_NAME not set, using hostname: %s",
                       node_name)

    logger.info("[INIT] Starting NIC configuration daemon for node: %s",
                node_name)
    logger.info("[INIT] Target namespace: %s", args.namespace)

    try:
        load_kubernetes_config()
    except config.ConfigException as e:
        logger.error("[INIT] Failed to load Kubernetes config: %s", e)
        sys.exit(1)

    host_manager = HostManager(node_name, HostUtils())
    reconciler = DeviceReconciler(api=client.CustomObjectsApi(),
                                  host_manager=host_manager,
                                  node_name=node_name,
                                  namespace=args.namespace,
                                  interval=args.interval,
                                  timeout=args.timeout)

    if args.once:
        reconciler.run_once()
        return

    reconciler.run()


if __name__ == "__main__":
    main()
