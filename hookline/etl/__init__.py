"""
ETL engine for captured webhook requests.

Filters select captured requests, transformations reshape them and loaders
deliver the result. JobManager ties the three together per job.
"""

from .config_loader import ConfigLoader, ConfigurationError, load_job_definitions
from .filters import filter_requests, matches
from .loaders import DestinationLoader, Loader
from .manager import JobManager
from .repository import JobRepository
from .transforms import (
    Transformation,
    TransformationError,
    TransformationPipeline,
    TransformationRegistry,
    get_global_registry,
    register_transformation,
)

__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "DestinationLoader",
    "JobManager",
    "JobRepository",
    "Loader",
    "Transformation",
    "TransformationError",
    "TransformationPipeline",
    "TransformationRegistry",
    "filter_requests",
    "get_global_registry",
    "load_job_definitions",
    "matches",
    "register_transformation",
]
