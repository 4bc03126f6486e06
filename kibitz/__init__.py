"""
Kibitz: drives the MCP Inspector web UI to smoke-test MCP servers.
"""
from .errors import (
    BrowserNotInitializedError,
    ConditionTimeoutError,
    ConfigError,
    InspectorStartError,
    InspectorTimeoutError,
    KibitzError,
    ServerConnectionError,
)
from .models import RunSummary, ServerTestResult, TestCaseResult
from .reporter import TestReporter
from .runner import InspectorTestRunner
from .schema_validation import RunnerOptions, ServerTestConfig, SuiteConfig, load_config
from .validator import DataValidator

__version__ = "0.1.0"

__all__ = [
    "BrowserNotInitializedError",
    "ConditionTimeoutError",
    "ConfigError",
    "DataValidator",
    "InspectorStartError",
    "InspectorTestRunner",
    "InspectorTimeoutError",
    "KibitzError",
    "RunSummary",
    "RunnerOptions",
    "ServerConnectionError",
    "ServerTestConfig",
    "ServerTestResult",
    "SuiteConfig",
    "TestCaseResult",
    "TestReporter",
    "load_config",
]
