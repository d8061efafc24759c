from __future__ import annotations

import pytest
from pymongo.errors import AutoReconnect, ExecutionTimeout, NetworkTimeout, OperationFailure

from bookadmin.services import errors
from bookadmin.services.errors import ConflictError, NotFoundError, UnavailableError


def _raise_inside_storage_errors(exc: Exception) -> None:
    with errors.storage_errors():
        raise exc


@pytest.mark.unit
def test_write_conflict_code_maps_to_conflict() -> None:
    exc = OperationFailure(
        "WriteConflict error",
        code=112,
        details={"codeName": "WriteConflict", "errorLabels": ["TransientTransactionError"]},
    )

    assert errors.is_write_conflict(exc) is True
    with pytest.raises(ConflictError) as exc_info:
        _raise_inside_storage_errors(exc)
    assert exc_info.value.__cause__ is exc


@pytest.mark.unit
def test_write_conflict_code_name_maps_to_conflict() -> None:
    exc = OperationFailure("conflict", details={"codeName": "WriteConflict"})

    assert errors.is_write_conflict(exc) is True


@pytest.mark.unit
def test_primary_stepdown_in_transaction_is_unavailable() -> None:
    exc = OperationFailure(
        "not primary",
        code=10107,
        details={"codeName": "NotWritablePrimary", "errorLabels": ["TransientTransactionError"]},
    )

    assert exc.has_error_label("TransientTransactionError")
    assert errors.is_write_conflict(exc) is False
    with pytest.raises(UnavailableError):
        _raise_inside_storage_errors(exc)


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc",
    [
        NetworkTimeout("timed out"),
        ExecutionTimeout("operation exceeded time limit", code=50),
        AutoReconnect("connection reset"),
        OperationFailure("unauthorized", code=13),
    ],
)
def test_storage_failures_map_to_unavailable(exc: Exception) -> None:
    with pytest.raises(UnavailableError) as exc_info:
        _raise_inside_storage_errors(exc)
    assert exc_info.value.code == "unavailable"


@pytest.mark.unit
def test_service_errors_pass_through() -> None:
    with pytest.raises(NotFoundError):
        _raise_inside_storage_errors(NotFoundError("配置项不存在"))
