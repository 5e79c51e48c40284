"""
tests/test_jwt_startup — JWT Secret Validation at Startup
===========================================================
The API must refuse to start when JWT_SECRET is missing, blank, too
short, or a known weak default.
"""

from __future__ import annotations

import importlib
import os
from unittest.mock import patch

import pytest


def _reload_deps():
    """Re-run the module body so ``_load_jwt_secret()`` sees the patched env."""
    import warden.api.deps as deps_mod

    importlib.reload(deps_mod)
    return deps_mod.JWT_SECRET


@pytest.fixture(autouse=True)
def _restore_jwt_secret():
    original = os.environ.get("JWT_SECRET")
    yield
    if original is not None:
        os.environ["JWT_SECRET"] = original
    else:
        os.environ.pop("JWT_SECRET", None)
    try:
        _reload_deps()
    except RuntimeError:
        pass  # no usable secret in this environment


class TestJWTSecretValidation:
    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("JWT_SECRET", None)
            with pytest.raises(RuntimeError, match="not set"):
                _reload_deps()

    @pytest.mark.parametrize(
        ("secret", "message"),
        [
            ("", "not set"),
            ("warden-dev-secret-change-me", "known weak default"),
            ("change-me", "known weak default"),
            ("tooshort", "too short"),
        ],
    )
    def test_rejects_bad_secret(self, secret, message):
        with patch.dict(os.environ, {"JWT_SECRET": secret}):
            with pytest.raises(RuntimeError, match=message):
                _reload_deps()

    def test_accepts_strong_secret(self):
        good_secret = "k" * 48
        with patch.dict(os.environ, {"JWT_SECRET": good_secret}):
            assert _reload_deps() == good_secret
