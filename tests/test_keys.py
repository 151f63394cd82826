"""Tests for cache key derivation."""

import functools
from datetime import datetime
from decimal import Decimal

import pytest

from memocache.keys import cache_name, canonicalize, compute_cache_key, function_identity, make_key


def module_level(x):
    return x


class Scaler:
    def __init__(self, factor):
        self.factor = factor

    def scale(self, x):
        return x * self.factor

    def __call__(self, x):
        return x * self.factor


class TestComputeCacheKey:
    """Test cache key computation stability."""

    def test_same_payload_same_key(self):
        payload = {"a": 1, "b": {"c": 2}}
        assert compute_cache_key(payload) == compute_cache_key(payload)

    def test_key_order_does_not_matter(self):
        assert compute_cache_key({"a": 1, "b": 2}) == compute_cache_key({"b": 2, "a": 1})

    def test_different_payloads_different_keys(self):
        assert compute_cache_key({"a": 1}) != compute_cache_key({"a": 2})


class TestFunctionIdentity:
    """Test how compute functions are named."""

    def test_module_level_function(self):
        assert function_identity(module_level) == f"{__name__}.module_level"

    def test_explicit_name_wins(self):
        @cache_name("reports.monthly")
        def build():
            return None

        assert function_identity(build) == "reports.monthly"

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            cache_name("")

    def test_lambdas_are_distinct(self):
        first = lambda x: x  # noqa: E731
        second = lambda x: x  # noqa: E731
        assert function_identity(first) != function_identity(second)
        assert function_identity(first) == function_identity(first)

    def test_bound_methods_of_different_instances(self):
        a, b = Scaler(2), Scaler(3)
        assert function_identity(a.scale) != function_identity(b.scale)
        assert function_identity(a.scale) == function_identity(a.scale)

    def test_callable_instances(self):
        a, b = Scaler(2), Scaler(2)
        assert function_identity(a) != function_identity(b)

    def test_partial_includes_bound_arguments(self):
        double = functools.partial(pow, exp=2)
        cube = functools.partial(pow, exp=3)
        assert function_identity(double) != function_identity(cube)


class TestMakeKey:
    """Test full key derivation."""

    def test_hashable_and_equal(self):
        k1 = make_key(module_level, (1, "a"))
        k2 = make_key(module_level, (1, "a"))
        assert k1 == k2
        assert len({k1, k2}) == 1

    def test_args_distinguish(self):
        assert make_key(module_level, (1,)) != make_key(module_level, (2,))

    def test_kwargs_distinguish(self):
        assert make_key(module_level, (), {"x": 1}) != make_key(module_level, (1,))

    def test_name_override(self):
        key = make_key(module_level, (1,), name="custom")
        assert key.function == "custom"
        assert key == make_key(Scaler(9), (1,), name="custom")


class TestArgumentTypes:
    """Structurally different arguments never share a key."""

    def test_int_and_str_dict_keys(self):
        assert make_key(module_level, ({1: "a"},)) != make_key(module_level, ({"1": "a"},))

    def test_decimal_and_str(self):
        assert make_key(module_level, (Decimal("1"),)) != make_key(module_level, ("1",))

    def test_int_float_bool(self):
        keys = {make_key(module_level, (v,)) for v in (1, 1.0, True, "1")}
        assert len(keys) == 4

    def test_datetime_and_iso_string(self):
        moment = datetime(2024, 1, 2, 3, 4, 5)
        assert make_key(module_level, (moment,)) != make_key(module_level, (moment.isoformat(),))

    def test_list_and_tuple(self):
        assert make_key(module_level, ([1, 2],)) != make_key(module_level, ((1, 2),))

    def test_mixed_key_types_are_stable(self):
        first = make_key(module_level, ({1: "a", "b": 2, None: 3},))
        second = make_key(module_level, ({"b": 2, None: 3, 1: "a"},))
        assert first == second

    def test_set_order_does_not_matter(self):
        assert compute_cache_key({"s": {3, "x", 1}}) == compute_cache_key({"s": {1, 3, "x"}})

    def test_canonical_form_is_type_tagged(self):
        assert canonicalize(1) == ["builtins.int", 1]
        assert canonicalize({1: "a"}) == ["builtins.dict", [[["builtins.int", 1], ["builtins.str", "a"]]]]
