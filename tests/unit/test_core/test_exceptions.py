# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the error hierarchy."""
from __future__ import annotations

import pytest

from qcow2img.core.exceptions import (
    Fatal,
    LaunchError,
    Qcow2ImgError,
    ValidationError,
    format_exception_for_cli,
    wrap_fatal,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    def test_base_exception_creation(self):
        err = Qcow2ImgError(code=1, msg="Test error")

        assert err.code == 1
        assert err.msg == "Test error"
        assert err.cause is None
        assert str(err) == "Test error"

    def test_subclasses(self):
        for cls in (Fatal, ValidationError, LaunchError):
            assert isinstance(cls(msg="x"), Qcow2ImgError)

    def test_exit_code_is_clamped(self):
        assert Fatal(code=-3, msg="neg").code == 1
        assert Fatal(code=999, msg="big").code == 255
        assert Fatal(code="nope", msg="bad").code == 1

    def test_message_is_single_line(self):
        err = Qcow2ImgError(msg="line one\nline two\r\n  three")
        assert err.msg == "line one line two three"

    def test_wrap_fatal_keeps_cause(self):
        cause = OSError("denied")
        err = wrap_fatal("cannot write", cause, code=3, path="/out.img")
        assert err.code == 3
        assert err.cause is cause
        assert err.context == {"path": "/out.img"}
        assert "cause: OSError: denied" in err.user_message(include_cause=True)


@pytest.mark.unit
class TestFormatForCli:
    def test_verbosity_levels(self):
        err = LaunchError(msg="Failed to start qemu-img", cause=PermissionError("denied"), context={"tool": "/q"})

        assert format_exception_for_cli(err) == "Failed to start qemu-img"
        assert "tool='/q'" in format_exception_for_cli(err, verbose=1)
        assert "PermissionError" in format_exception_for_cli(err, verbose=2)

    def test_foreign_exception(self):
        assert format_exception_for_cli(ValueError("boom")) == "boom"
        assert format_exception_for_cli(ValueError("boom"), verbose=2) == "ValueError: boom"
