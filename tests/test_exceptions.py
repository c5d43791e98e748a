from unlustig.exceptions import (
    ConfigurationError,
    DecodeError,
    DecodeErrorKind,
    DependencyMissingError,
    EncodeError,
    EncodeErrorKind,
    ErrorCategory,
    LayoutError,
    LayoutErrorKind,
    ProcessTimeoutError,
    UnlustigError,
)


def test_defaults_and_labels() -> None:
    err = UnlustigError("boom")
    assert err.category == ErrorCategory.RUNTIME
    assert err.exit_code == 1
    assert err.label() == "Runtime error"


def test_configuration_error_category_and_code() -> None:
    err = ConfigurationError("config oops")
    assert err.category == ErrorCategory.CONFIG
    assert err.exit_code == 2
    assert err.label() == "Configuration error"


def test_dependency_error_category_and_code_passthrough() -> None:
    err = DependencyMissingError("missing", exit_code=9)
    assert err.category == ErrorCategory.DEPENDENCY
    assert err.exit_code == 9
    assert err.label() == "Dependency error"


def test_timeout_error_keeps_budget() -> None:
    err = ProcessTimeoutError("too slow", timeout=2.5)
    assert err.timeout == 2.5
    assert err.exit_code == 1


def test_stage_errors_name_their_stage() -> None:
    decode_err = DecodeError(DecodeErrorKind.CORRUPT, "bad header")
    layout_err = LayoutError(LayoutErrorKind.TEXT_TOO_LARGE, "does not fit")
    encode_err = EncodeError(EncodeErrorKind.IO_FAILURE, "disk full")

    assert decode_err.label() == "Decode error"
    assert layout_err.label() == "Layout error"
    assert encode_err.label() == "Encode error"
    assert decode_err.kind is DecodeErrorKind.CORRUPT
    assert str(layout_err) == "does not fit"
    assert all(e.exit_code == 1 for e in (decode_err, layout_err, encode_err))


def test_stage_error_categories_follow_kind() -> None:
    assert DecodeError(DecodeErrorKind.MISSING_DEPENDENCY, "x").exit_code == 3
    assert EncodeError(EncodeErrorKind.MISSING_DEPENDENCY, "x").exit_code == 3
    assert LayoutError(LayoutErrorKind.INVALID_STYLE, "x").exit_code == 2
    assert isinstance(DecodeError(DecodeErrorKind.NOT_FOUND, "x"), UnlustigError)
