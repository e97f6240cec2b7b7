# Copyright (c) 2025 Arista Networks, Inc.
# Use of this source code is governed by the Apache License 2.0
# that can be found in the LICENSE file.
"""
Exceptions raised by the NIC configuration daemon.

- IncorrectSpecError: the declared configuration cannot be applied to the
  device (unsupported parameter, invalid template). Not retryable until the
  NicDevice spec changes.
- HostUtilsError: a host tool invocation or sysfs read failed. Transient,
  the next reconcile pass retries.
"""

from typing import Optional, Sequence


class NicConfigurationError(Exception):
    """Base class for all NIC configuration errors"""


class IncorrectSpecError(NicConfigurationError):
    """The NicDevice spec references configuration the device does not support"""


class HostUtilsError(NicConfigurationError):
    """A command or sysfs lookup on the host failed"""

    def __init__(self,
                 message: str,
                 command: Optional[Sequence[str]] = None,
                 stderr: Optional[str] = None):
        super().__init__(message)
        self.command = list(command) if command else []
        self.stderr = stderr or ""

    def __str__(self) -> str:
        message = super().__str__()
        if self.stderr:
            return f"{message}: {self.stderr.strip()}"
        return message
