"""
Custom Exceptions for Node Clustering.

Provides a hierarchy of clustering exceptions for the different failure modes
of the cluster index, the geometry helpers and the navigation builder.

All of them are local, non-fatal conditions: the controller catches
ClusteringError and degrades to un-clustered rendering.
"""


class ClusteringError(Exception):
    """
    Base exception for clustering failures.

    All clustering-specific exceptions inherit from this class,
    allowing for broad exception handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the failure
    """

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ClusterConfigError(ClusteringError, ValueError):
    """
    Clustering configuration is invalid.

    Raised when a configuration value is out of range (negative radius,
    min points below 1, negative max zoom, ...). Values are never clamped.

    Attributes:
        field_name: Name of the offending configuration field
        value: The rejected value
        reason: Explanation of the constraint that was violated
    """

    def __init__(self, field_name: str, value=None, reason: str = None):
        message = f"Invalid clustering configuration for '{field_name}'"
        if reason:
            message = f"{message}: {reason}"
        details = {
            "field": field_name,
            "value": value,
        }
        super().__init__(message, details)
        self.field_name = field_name
        self.value = value
        self.reason = reason


class ClusterNotFoundError(ClusteringError, KeyError):
    """
    Cluster id is not known to the index.

    Raised by expand/children/leaves lookups when the id does not exist in
    the current build. This is distinct from a cluster that exists but has
    no finer children (that case is a normal expansion result).

    Attributes:
        cluster_id: The id that was looked up
        generation: Build generation of the index that was queried
    """

    def __init__(self, cluster_id, generation: int = None, message: str = None):
        message = message or f"Cluster {cluster_id} not found in index"
        details = {
            "cluster_id": cluster_id,
            "generation": generation,
        }
        super().__init__(message, details)
        self.cluster_id = cluster_id
        self.generation = generation


class StaleClusterError(ClusterNotFoundError):
    """
    Cluster feature belongs to an older build of the index.

    Raised when a ClusterFeature obtained from a previous build is passed
    back after the node set changed and the index was rebuilt.

    Attributes:
        feature_generation: Generation stamped on the feature
        generation: Generation of the current index
    """

    def __init__(self, cluster_id, feature_generation: int, generation: int):
        message = (
            f"Cluster {cluster_id} is from build {feature_generation}, "
            f"index is at build {generation}"
        )
        super().__init__(cluster_id, generation=generation, message=message)
        self.details["feature_generation"] = feature_generation
        self.feature_generation = feature_generation


class FeatureKindError(ClusteringError, TypeError):
    """
    A node feature was used where a cluster feature is required.

    This is a caller contract violation (the tagged union must be checked
    with is_cluster first), so it is raised rather than answered with a
    sentinel.

    Attributes:
        expected: Kind that was required
        actual: Kind that was received
    """

    def __init__(self, expected: str, actual: str, operation: str = None):
        message = f"Expected a {expected} feature, got {actual}"
        if operation:
            message = f"{operation}: {message}"
        details = {
            "expected": expected,
            "actual": actual,
        }
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class InvalidCameraStateError(ClusteringError, ValueError):
    """
    Camera state contains non-finite or out-of-range values.

    Raised by the geometry helpers and the navigation builder before any
    interpolation happens, so no non-finite keyframe is ever produced.

    Attributes:
        field_name: Offending camera field
        value: The rejected value
    """

    def __init__(self, field_name: str, value=None, reason: str = None):
        message = f"Invalid camera {field_name}: {value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, {"field": field_name})
        self.field_name = field_name
        self.value = value
