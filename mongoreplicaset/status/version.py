"""
Server version gate
"""

from ..exceptions import IncorrectUserInputError
from ..models import MongoDbVersion

FIRST_SUPPORTED_MONGODB_VERSION = MongoDbVersion(3, 6, 14)


def verify_version(version: MongoDbVersion) -> MongoDbVersion:
    """
    Reject servers older than the first supported version

    Raises:
        IncorrectUserInputError: If the version is below 3.6.14
    """
    if version < FIRST_SUPPORTED_MONGODB_VERSION:
        raise IncorrectUserInputError(
            f"Please, use a MongoDB version that is more or equal to: "
            f"{FIRST_SUPPORTED_MONGODB_VERSION}, got: {version}"
        )
    return version
