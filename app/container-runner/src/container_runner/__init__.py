from .config import RunnerSettings, load_settings
from .contracts import (
    BinaryData,
    BinaryMapping,
    ContainerExecutionConfig,
    ContainerExecutionResult,
    ItemResult,
    ResourceLimits,
    VolumeMount,
    WorkflowItem,
)
from .engine_client import EngineClient
from .errors import (
    BinaryStagingError,
    CleanupError,
    ContainerRunnerError,
    EngineAPIError,
    InvalidImageReference,
    ItemExecutionError,
    ParamsError,
    SocketConnectionError,
    WaitTimeoutError,
)
from .image_names import validate_image_name
from .lifecycle import ContainerLifecycleManager, LifecycleState, execute_container
from .log_stream import demultiplex_log_stream
from .node import RunContainerNode, run_container
from .params import RunContainerParams
from .resource_limits import calculate_resource_limits
from .socket_resolver import resolve_socket_path

__all__ = [
    "RunnerSettings",
    "load_settings",
    "BinaryData",
    "BinaryMapping",
    "ContainerExecutionConfig",
    "ContainerExecutionResult",
    "ItemResult",
    "ResourceLimits",
    "VolumeMount",
    "WorkflowItem",
    "EngineClient",
    "BinaryStagingError",
    "CleanupError",
    "ContainerRunnerError",
    "EngineAPIError",
    "InvalidImageReference",
    "ItemExecutionError",
    "ParamsError",
    "SocketConnectionError",
    "WaitTimeoutError",
    "validate_image_name",
    "ContainerLifecycleManager",
    "LifecycleState",
    "execute_container",
    "demultiplex_log_stream",
    "RunContainerNode",
    "run_container",
    "RunContainerParams",
    "calculate_resource_limits",
    "resolve_socket_path",
]
