"""Device status snapshot returned by a status poll."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ChannelStatus:
    """Mute and gain of one channel. ``None`` means the value is unknown."""

    mute: bool | None = None
    gain: float | None = None

    def to_dict(self) -> dict:
        d: dict = {}
        if self.mute is not None:
            d["mute"] = self.mute
        if self.gain is not None:
            d["gain"] = self.gain
        return d


@dataclass
class DeviceStatus:
    """Read-only amplifier state from one poll cycle.

    Fields whose sub-request failed stay ``None``; consumers must not read
    ``None`` as off or zero.
    """

    power: bool | None = None
    fault: bool | None = None
    channels: list[ChannelStatus] = field(default_factory=list)

    @classmethod
    def empty(cls, max_channels: int) -> DeviceStatus:
        return cls(channels=[ChannelStatus() for _ in range(max_channels)])

    def to_dict(self) -> dict:
        d: dict = {}
        if self.power is not None:
            d["power"] = self.power
        if self.fault is not None:
            d["fault"] = self.fault
        d["channels"] = [ch.to_dict() for ch in self.channels]
        return d
