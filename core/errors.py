"""
core/errors.py -- Domain exception types shared by every layer.

The HTTP mapping lives in api/main.py:
  BadRequest   -> 400 (message shown)
  Unauthorized -> 401 (message always blank)
  StorageError -> 500 (message carries the underlying error text)

Layer rule: core/ is the kernel and imports nothing from the project.
"""


class VPlanError(Exception):
    """Base class for all VPlan server errors."""


class BadRequest(VPlanError):
    """Malformed or missing client input."""


class Unauthorized(VPlanError):
    """Credential, session or token did not validate.

    Deliberately carries no detail about *why* -- unknown user and wrong
    password must look the same to the caller.
    """


class StorageError(VPlanError):
    """A database operation failed (connection, constraint, query)."""
