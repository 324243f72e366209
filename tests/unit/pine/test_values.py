"""Unit tests for runtime value helpers (na handling, broadcasting, history)."""

import math

import numpy as np
import pytest

from app.services.pine.errors import PineRuntimeError
from app.services.pine.values import (
    NA,
    as_int,
    divide,
    is_na,
    last_value,
    nz,
    select,
    shift,
    to_bool,
    to_series,
)


class TestIsNa:
    def test_scalars(self):
        assert is_na(NA) is True
        assert is_na(None) is True
        assert is_na(0.0) is False
        assert is_na(False) is False
        assert is_na("#FF0000") is False

    def test_series(self):
        out = is_na(np.array([1.0, NA]))

        assert out.tolist() == [False, True]

    def test_object_series(self):
        out = is_na(np.array(["#FF0000", NA], dtype=object))

        assert out.tolist() == [False, True]

    def test_na_never_equals_itself_numerically(self):
        assert NA != NA
        assert is_na(NA)


class TestNz:
    def test_scalar(self):
        assert nz(NA) == 0
        assert nz(NA, 5) == 5
        assert nz(3.0) == 3.0

    def test_series(self):
        out = nz(np.array([NA, 2.0]), -1)

        assert out.tolist() == [-1.0, 2.0]

    def test_series_without_na_unchanged(self):
        x = np.array([1.0, 2.0])

        assert nz(x) is x


class TestToSeries:
    def test_broadcast(self):
        assert to_series(2, 3).tolist() == [2.0, 2.0, 2.0]

    def test_bool_series_as_float(self):
        assert to_series(np.array([True, False]), 2).tolist() == [1.0, 0.0]

    def test_length_mismatch(self):
        with pytest.raises(PineRuntimeError):
            to_series(np.zeros(3), 4)

    def test_text_rejected(self):
        with pytest.raises(PineRuntimeError):
            to_series("abc", 2)


class TestToBool:
    def test_na_and_zero_false(self):
        assert to_bool(NA) is False
        assert to_bool(0) is False
        assert to_bool(2) is True

    def test_series(self):
        assert to_bool(np.array([NA, 0.0, 1.5])).tolist() == [False, False, True]


class TestShift:
    def test_history_reference(self):
        out = shift(np.array([1.0, 2.0, 3.0]), 1)

        assert math.isnan(out[0])
        assert out[1:].tolist() == [1.0, 2.0]

    def test_offset_beyond_length(self):
        assert np.isnan(shift(np.array([1.0, 2.0]), 5)).all()

    def test_bool_series_padded_false(self):
        out = shift(np.array([True, True]), 1)

        assert out.tolist() == [False, True]

    def test_scalar_unchanged(self):
        assert shift(3.0, 2) == 3.0

    def test_negative_offset(self):
        with pytest.raises(PineRuntimeError):
            shift(np.zeros(2), -1)


class TestSelect:
    def test_numeric(self):
        out = select(np.array([True, False]), 1.0, NA)

        assert out[0] == 1.0
        assert math.isnan(out[1])

    def test_text_branches_give_object_series(self):
        out = select(np.array([True, False]), "#FF0000", NA)

        assert out.dtype == object
        assert out[0] == "#FF0000"
        assert is_na(out[1])

    def test_bool_branches_stay_bool(self):
        out = select(np.array([True, False]), True, False)

        assert out.dtype == bool


class TestDivide:
    def test_scalar_by_zero_is_na(self):
        assert math.isnan(divide(1, 0))

    def test_series_by_zero_is_na(self):
        out = divide(np.array([1.0, 4.0]), np.array([0.0, 2.0]))

        assert math.isnan(out[0])
        assert out[1] == 2.0


class TestSimpleValues:
    def test_last_value(self):
        assert last_value(np.array([1.0, 2.0])) == 2.0
        assert last_value(5) == 5

    def test_as_int(self):
        assert as_int(3.9) == 3
        assert as_int(np.array([1.0, 4.0])) == 4

    def test_as_int_rejects_na(self):
        with pytest.raises(PineRuntimeError):
            as_int(NA)
