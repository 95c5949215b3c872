"""Project-wide constants (annotation keys, defaults, Kubernetes paths)."""

ANNOTATION_PREFIX: str = "configmap-replicator"

REPLICATION_ALLOWED_KEY: str = f"{ANNOTATION_PREFIX}/replication-allowed"
ALLOWED_NAMESPACES_KEY: str = f"{ANNOTATION_PREFIX}/allowed-namespaces"
EXCLUDED_NAMESPACES_KEY: str = f"{ANNOTATION_PREFIX}/excluded-namespaces"
REPLICATED_FROM_KEY: str = f"{ANNOTATION_PREFIX}/replicated-from"

NAMESPACE_LIST_SEPARATOR: str = ","
PROVENANCE_SEPARATOR: str = "_"

DEFAULT_RECONCILIATION_INTERVAL: str = "1m"
DEFAULT_EXCLUDED_NAMESPACES = ("kube-system",)
DEFAULT_ALLOWED_NAMESPACES = ()

DEFAULT_MAX_CONCURRENCY: int = 16
DEFAULT_WATCH_RETRY_DELAY_SECONDS: float = 5.0

DEFAULT_STATUS_HOST: str = "0.0.0.0"
DEFAULT_STATUS_PORT: int = 8080

SERVICE_ACCOUNT_DIR: str = "/var/run/secrets/kubernetes.io/serviceaccount"
KUBERNETES_REQUEST_TIMEOUT_SECONDS: float = 30.0
TOKEN_REFRESH_INTERVAL_SECONDS: float = 60.0
