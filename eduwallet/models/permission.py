from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from eduwallet.services.errors import InvalidCapability


class Capability(StrEnum):
    READ = "read"
    WRITE = "write"

    @classmethod
    def parse(cls, value: object) -> Capability:
        if isinstance(value, Capability):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidCapability(f"unknown capability {value!r}") from None


class Phase(StrEnum):
    REQUESTED = "requested"
    GRANTED = "granted"


PermissionKey = tuple[str, Capability]


@dataclass(frozen=True, slots=True)
class Permission:
    """One capability a counterparty holds (or has asked for) over a record.

    Identity is (counterparty, capability); phase says where in the
    Absent -> Requested -> Granted -> Absent lifecycle it sits.
    """

    counterparty: str
    capability: Capability
    phase: Phase

    @property
    def key(self) -> PermissionKey:
        return (self.counterparty, self.capability)

    @property
    def is_request(self) -> bool:
        return self.phase is Phase.REQUESTED

    def granted(self) -> Permission:
        return replace(self, phase=Phase.GRANTED)

    @staticmethod
    def request(counterparty: str, capability: Capability) -> Permission:
        return Permission(counterparty, capability, Phase.REQUESTED)

    @staticmethod
    def grant(counterparty: str, capability: Capability) -> Permission:
        return Permission(counterparty, capability, Phase.GRANTED)


@dataclass(frozen=True, slots=True)
class PermissionView:
    """Holder-facing partition of permissions: pending requests and active grants."""

    requests: tuple[Permission, ...] = ()
    read: tuple[Permission, ...] = ()
    write: tuple[Permission, ...] = ()

    def all(self) -> tuple[Permission, ...]:
        return self.requests + self.read + self.write
