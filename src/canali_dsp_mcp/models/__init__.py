"""Data models for device status and alarm bit tables."""

from .status import ChannelStatus, DeviceStatus
from .alarms import explain_channel, explain_global
