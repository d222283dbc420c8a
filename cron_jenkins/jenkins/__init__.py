"""Jenkins client package.

- client.py: HTTP client (job listing, parameter discovery, build triggering)
- paths.py: folder-qualified job path encoding
- parameters.py: typed parameter definitions and value collection
"""

from .client import JenkinsAuthConfig, JenkinsClient, JenkinsJob
from .parameters import ParameterDefinition, ParameterKind, collect_parameters, collect_value

__all__ = [
    "JenkinsAuthConfig",
    "JenkinsClient",
    "JenkinsJob",
    "ParameterDefinition",
    "ParameterKind",
    "collect_parameters",
    "collect_value",
]
