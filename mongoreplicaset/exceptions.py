"""
Exception hierarchy for replica set provisioning and fault injection

- IncorrectUserInputError: configuration errors, never retried
- MongoNodeInitializationError: transient provisioning or remote command failures
- InvariantViolationError: programmer misuse or internal inconsistency
- StatusParseError: unreadable shell transcripts
"""

from typing import Optional


class MongoReplicaSetError(Exception):
    """Base class for all replica set errors"""
    pass


class IncorrectUserInputError(MongoReplicaSetError):
    """Raised when the requested topology or server version is unsupported"""
    pass


class MongoNodeInitializationError(MongoReplicaSetError):
    """Raised when a node cannot be provisioned or a remote command fails"""
    pass


class StatusParseError(MongoNodeInitializationError):
    """Raised when shell output cannot be turned into a cluster status"""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class ReconfigurationError(MongoNodeInitializationError):
    """Raised when a membership command does not succeed"""

    def __init__(self, message: str, command: str, output: str):
        super().__init__(f"{message}: command: {command}, output: {output}")
        self.command = command
        self.output = output


class ReconfigurationTimeoutError(MongoNodeInitializationError):
    """Raised when a bounded reconfiguration exceeds its host-side deadline"""
    pass


class InvariantViolationError(MongoReplicaSetError):
    """Raised on misuse such as querying before start or faulting a single node"""
    pass


class NodeNotFoundError(InvariantViolationError):
    """Raised when the node registry has no entry for an address"""
    pass


class DockerNotAvailableError(MongoReplicaSetError):
    """Raised when Docker is not available or not running"""
    pass


class ProxyError(MongoReplicaSetError):
    """Raised when the soft-fault proxy rejects a request"""
    pass
