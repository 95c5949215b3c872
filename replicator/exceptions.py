"""Custom exception classes for the replicator."""


class ReplicatorException(Exception):
    """
    Base exception class for all replicator errors.
    """
    pass


class ConfigurationError(ReplicatorException):
    """
    Raised when startup configuration is invalid (bad duration, bad client setup).
    Fatal: the process refuses to start.
    """
    pass


class PolicyError(ReplicatorException):
    """
    Raised when a ConfigMap's replication annotations are contradictory.
    The triggering event is skipped for that object.
    """

    def __init__(self, source: str, overlap):
        self.source = source
        self.overlap = frozenset(overlap)
        super().__init__(
            f"Unable to replicate ConfigMap {source}: allowed and excluded namespaces "
            f"overlap on {sorted(self.overlap)}"
        )


class OwnershipConflictError(ReplicatorException):
    """
    Raised when a target namespace holds a same-named ConfigMap that was not
    replicated from this source.
    """

    def __init__(self, source: str, target: str, found_provenance=None):
        self.source = source
        self.target = target
        self.found_provenance = found_provenance
        owner = found_provenance if found_provenance else "no provenance"
        super().__init__(
            f"ConfigMap {target} is not owned by {source} ({owner}); refusing to modify it"
        )


class TransientStoreError(ReplicatorException):
    """
    Raised when the object store is unreachable or rejects a request for a
    reason that may go away (network failure, throttling, server error).
    """
    pass


class ObjectNotFoundError(ReplicatorException):
    """
    Raised when a requested ConfigMap or namespace does not exist.
    """
    pass


class ObjectAlreadyExistsError(ReplicatorException):
    """
    Raised when creating a ConfigMap whose name is already taken in the namespace.
    """
    pass
