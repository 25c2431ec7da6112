"""Registry Authorization Policy Protocol.

Defines the capability check the registry delegates to when deciding who may
act as a maester and who may rotate the maester key(s). This is a Protocol
(structural subtyping) so concrete policies don't need to inherit from a base
class; they just need to match the shape.

Two protocol revisions exist and both are supported:
    - SingleMaesterPolicy: exactly one maester address; only the operator
      rotates it.
    - MaesterListPolicy:   a list of maesters checked by membership; the
      operator or any current maester may replace the list.

The registry stores the maester list in its own state either way, so the
ledger can save and roll it back like any other field.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from escrow_marketplace.domain.enums import AuthorizationPolicyType
from escrow_marketplace.domain.exceptions import InvalidKeyError


def _check_address(key: object) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Invalid address: {key!r}")
    return key


@runtime_checkable
class AuthorizationPolicy(Protocol):
    """Protocol that all registry authorization policies must satisfy."""

    name: str

    def normalize(self, keys: str | Sequence[str]) -> list[str]:
        """Validate an update_maester argument and return the new maester list.

        Raises:
            InvalidKeyError: If the argument does not fit this policy's shape.
        """
        ...

    def is_maester(self, maesters: Sequence[str], caller: str) -> bool:
        """Return True if caller may force-close sales and replace the template."""
        ...

    def can_manage(self, maesters: Sequence[str], operator: str, caller: str) -> bool:
        """Return True if caller may rotate the maester key(s)."""
        ...


class SingleMaesterPolicy:
    """One administrative key, rotated only by the operator."""

    name = AuthorizationPolicyType.SINGLE.value

    def normalize(self, keys: str | Sequence[str]) -> list[str]:
        if isinstance(keys, str):
            return [_check_address(keys)]
        keys = list(keys)
        if len(keys) != 1:
            raise InvalidKeyError(
                f"Single-maester policy expects exactly one key, got {len(keys)}"
            )
        return [_check_address(keys[0])]

    def is_maester(self, maesters: Sequence[str], caller: str) -> bool:
        return bool(maesters) and maesters[0] == caller

    def can_manage(self, maesters: Sequence[str], operator: str, caller: str) -> bool:
        return caller == operator


class MaesterListPolicy:
    """A set of administrative keys checked by membership.

    Any current maester may replace the list, as may the operator.
    Duplicates are dropped while preserving order.
    """

    name = AuthorizationPolicyType.LIST.value

    def normalize(self, keys: str | Sequence[str]) -> list[str]:
        if isinstance(keys, str):
            keys = [keys]
        unique = list(dict.fromkeys(_check_address(k) for k in keys))
        if not unique:
            raise InvalidKeyError("Maester list must not be empty")
        return unique

    def is_maester(self, maesters: Sequence[str], caller: str) -> bool:
        return caller in maesters

    def can_manage(self, maesters: Sequence[str], operator: str, caller: str) -> bool:
        return caller == operator or caller in maesters


class AuthorizationPolicyFactory:
    """Factory that creates the authorization policy named in settings.

    Usage:
        policy = AuthorizationPolicyFactory.create("single")
        policy.is_maester(["0xabc..."], caller)
    """

    _registry: dict[str, type] = {
        AuthorizationPolicyType.SINGLE.value: SingleMaesterPolicy,
        AuthorizationPolicyType.LIST.value: MaesterListPolicy,
    }

    @classmethod
    def create(cls, policy_type: str) -> AuthorizationPolicy:
        """Create a policy instance by name.

        Raises:
            ValueError: If the name is unknown.
        """
        policy_class = cls._registry.get(policy_type)
        if policy_class is None:
            raise ValueError(
                f"Unknown authorization policy: '{policy_type}'. "
                f"Valid policies: {list(cls._registry.keys())}"
            )
        return policy_class()

    @classmethod
    def get_supported_types(cls) -> list[str]:
        """Return the list of supported policy names."""
        return list(cls._registry.keys())
