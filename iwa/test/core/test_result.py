"""Tests for iwa.core.result module."""

import pytest

from iwa.core.result import Err, Ok, Result, is_err, is_ok


class TestOk:
    """Tests for Ok type."""

    def test_ok_is_ok(self) -> None:
        result = Ok(42)
        assert result.is_ok() is True
        assert result.is_err() is False

    def test_ok_unwrap(self) -> None:
        """Ok.unwrap() returns the value."""
        assert Ok(42).unwrap() == 42

    def test_ok_unwrap_or_ignores_default(self) -> None:
        assert Ok(42).unwrap_or(0) == 42

    def test_ok_unwrap_err_raises(self) -> None:
        """Ok.unwrap_err() raises ValueError."""
        with pytest.raises(ValueError, match="called unwrap_err on Ok"):
            Ok(42).unwrap_err()

    def test_ok_map(self) -> None:
        assert Ok(21).map(lambda x: x * 2) == Ok(42)

    def test_ok_map_err_is_noop(self) -> None:
        assert Ok(42).map_err(lambda e: f"error: {e}") == Ok(42)

    def test_ok_flat_map(self) -> None:
        result: Result[int, str] = Ok(21)
        assert result.flat_map(lambda x: Ok(x * 2)) == Ok(42)
        assert result.flat_map(lambda _: Err("nope")) == Err("nope")

    def test_repr(self) -> None:
        assert repr(Ok(42)) == "Ok(42)"
        assert repr(Ok("v1")) == "Ok('v1')"


class TestErr:
    """Tests for Err type."""

    def test_err_is_err(self) -> None:
        result = Err("boom")
        assert result.is_err() is True
        assert result.is_ok() is False

    def test_err_unwrap_raises(self) -> None:
        with pytest.raises(ValueError, match="called unwrap on Err: boom"):
            Err("boom").unwrap()

    def test_err_unwrap_or_returns_default(self) -> None:
        assert Err("boom").unwrap_or(7) == 7

    def test_err_unwrap_err(self) -> None:
        assert Err("boom").unwrap_err() == "boom"

    def test_err_map_is_noop(self) -> None:
        assert Err("boom").map(lambda x: x * 2) == Err("boom")

    def test_err_map_err(self) -> None:
        assert Err("boom").map_err(str.upper) == Err("BOOM")

    def test_err_flat_map_short_circuits(self) -> None:
        called: list[int] = []

        def step(x: int) -> Result[int, str]:
            called.append(x)
            return Ok(x)

        result: Result[int, str] = Err("boom")
        assert result.flat_map(step) == Err("boom")
        assert called == []


class TestPatternMatching:
    def test_match_ok(self) -> None:
        result: Result[int, str] = Ok(3)
        match result:
            case Ok(value):
                assert value == 3
            case Err(_):
                pytest.fail("expected Ok")

    def test_match_err(self) -> None:
        result: Result[int, str] = Err("bad")
        match result:
            case Ok(_):
                pytest.fail("expected Err")
            case Err(error):
                assert error == "bad"


def test_type_guards() -> None:
    assert is_ok(Ok(1)) is True
    assert is_ok(Err(1)) is False
    assert is_err(Err(1)) is True
    assert is_err(Ok(1)) is False


def test_results_are_frozen() -> None:
    result = Ok(1)
    with pytest.raises(AttributeError):
        result.value = 2  # type: ignore[misc]
