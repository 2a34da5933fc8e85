"""
Exceptions shared by the data access layer, the identity provider and the
state containers.
"""

from typing import Optional

from pymongo.errors import OperationFailure

# MongoDB server codes meaning "this query needs an index that is not there":
# IndexNotFound, and NoQueryExecutionPlans (raised under `notablescan`).
INDEX_ERROR_CODES = {27, 291}


class DataAccessError(Exception):
    """Store failure surfaced by the data access layer."""


class DocumentNotFoundError(DataAccessError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"No document '{doc_id}' in '{collection}'")


class IndexBuildingError(DataAccessError):
    """A query's supporting index does not exist yet."""


class FetchTimeoutError(DataAccessError):
    pass


class IdentityError(Exception):
    """Rejection from the identity provider, with a machine-readable code."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class AuthError(IdentityError):
    """Identity failure re-raised by the auth state container."""

    @classmethod
    def from_identity_error(cls, exc: IdentityError) -> "AuthError":
        return cls(exc.code, exc.message)


def is_index_error(exc: Optional[BaseException]) -> bool:
    if exc is None:
        return False
    if isinstance(exc, IndexBuildingError):
        return True
    if isinstance(exc, OperationFailure):
        if exc.code in INDEX_ERROR_CODES:
            return True
        # BadValue (2) is what a hint against a missing index produces
        return exc.code == 2 and "index" in str(exc).lower()
    return False
