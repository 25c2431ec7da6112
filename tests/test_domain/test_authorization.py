"""Unit tests for registry authorization policies and their factory."""

from __future__ import annotations

import pytest

from escrow_marketplace.domain.authorization import (
    AuthorizationPolicy,
    AuthorizationPolicyFactory,
    MaesterListPolicy,
    SingleMaesterPolicy,
)
from escrow_marketplace.domain.exceptions import InvalidKeyError

MAESTER = "0x" + "a1" * 20
OTHER = "0x" + "a2" * 20
OPERATOR = "0x" + "0f" * 20


class TestAuthorizationPolicyFactory:
    def test_create_single(self) -> None:
        policy = AuthorizationPolicyFactory.create("single")
        assert isinstance(policy, SingleMaesterPolicy)

    def test_create_list(self) -> None:
        policy = AuthorizationPolicyFactory.create("list")
        assert isinstance(policy, MaesterListPolicy)

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown authorization policy"):
            AuthorizationPolicyFactory.create("committee")

    def test_policies_satisfy_protocol(self) -> None:
        for name in AuthorizationPolicyFactory.get_supported_types():
            assert isinstance(AuthorizationPolicyFactory.create(name), AuthorizationPolicy)

    def test_get_supported_types(self) -> None:
        assert AuthorizationPolicyFactory.get_supported_types() == ["single", "list"]


class TestSingleMaesterPolicy:
    def test_normalize_accepts_one_key(self) -> None:
        policy = SingleMaesterPolicy()
        assert policy.normalize(MAESTER) == [MAESTER]
        assert policy.normalize([MAESTER]) == [MAESTER]

    def test_normalize_rejects_several_keys(self) -> None:
        with pytest.raises(InvalidKeyError, match="exactly one key"):
            SingleMaesterPolicy().normalize([MAESTER, OTHER])

    def test_normalize_rejects_empty_key(self) -> None:
        with pytest.raises(InvalidKeyError):
            SingleMaesterPolicy().normalize("")

    def test_is_maester(self) -> None:
        policy = SingleMaesterPolicy()
        assert policy.is_maester([MAESTER], MAESTER)
        assert not policy.is_maester([MAESTER], OTHER)

    def test_only_operator_manages(self) -> None:
        policy = SingleMaesterPolicy()
        assert policy.can_manage([MAESTER], OPERATOR, OPERATOR)
        assert not policy.can_manage([MAESTER], OPERATOR, MAESTER)


class TestMaesterListPolicy:
    def test_normalize_dedupes_in_order(self) -> None:
        keys = MaesterListPolicy().normalize([OTHER, MAESTER, OTHER])
        assert keys == [OTHER, MAESTER]

    def test_normalize_wraps_single_key(self) -> None:
        assert MaesterListPolicy().normalize(MAESTER) == [MAESTER]

    def test_normalize_rejects_empty_list(self) -> None:
        with pytest.raises(InvalidKeyError, match="must not be empty"):
            MaesterListPolicy().normalize([])

    def test_membership(self) -> None:
        policy = MaesterListPolicy()
        assert policy.is_maester([MAESTER, OTHER], OTHER)
        assert not policy.is_maester([MAESTER], OPERATOR)

    def test_operator_or_maester_manages(self) -> None:
        policy = MaesterListPolicy()
        assert policy.can_manage([MAESTER], OPERATOR, OPERATOR)
        assert policy.can_manage([MAESTER], OPERATOR, MAESTER)
        assert not policy.can_manage([MAESTER], OPERATOR, OTHER)
