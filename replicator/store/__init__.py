"""
Object store adapters.

The replicator only talks to the cluster through the PartitionStore
interface; the in-memory store backs tests and dry runs, the Kubernetes
store talks to a real API server.
"""
