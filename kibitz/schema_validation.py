"""
Configuration schemas for Kibitz: runner options and the server config file.
"""
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigError

Capability = Literal["tools", "resources", "prompts"]

DEFAULT_CONFIG_PATH = Path(__file__).parent / "configs" / "servers.yaml"


class _CaseModel(BaseModel):
    # Accept both the snake_case field names and the camelCase keys of the
    # Inspector suite's JSON configs.
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ToolCase(_CaseModel):
    """A tool to run through the Tools tab"""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    has_progress_notifications: bool = Field(default=False, alias="hasProgressNotifications")
    expected_response: Optional[str] = Field(default=None, alias="expectedResponse")
    elicitation_form: Dict[str, Any] = Field(default_factory=dict, alias="elicitationForm")

    @property
    def requires_elicitation(self) -> bool:
        return self.expected_response == "elicitation"


class PromptCase(_CaseModel):
    """A prompt to render through the Prompts tab"""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class TestCases(_CaseModel):
    __test__ = False

    tools: List[ToolCase] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    prompts: List[PromptCase] = Field(default_factory=list)


class ServerTestConfig(_CaseModel):
    """One MCP server under test"""
    name: str = Field(..., description="Display name of the server")
    path: str = Field(..., description="Entry point passed to `node`")
    capabilities: List[Capability] = Field(default_factory=list)
    test_cases: TestCases = Field(default_factory=TestCases, alias="testCases")
    expected_tools: Optional[int] = Field(default=None, ge=0, alias="expectedTools")
    expected_resources: Optional[int] = Field(default=None, ge=0, alias="expectedResources")
    expected_prompts: Optional[int] = Field(default=None, ge=0, alias="expectedPrompts")

    def expected_count(self, capability: str) -> int:
        """Expected test count for a capability; defaults to the configured cases"""
        explicit = getattr(self, f"expected_{capability}")
        if explicit is not None:
            return explicit
        return len(getattr(self.test_cases, capability))

    def has_capability(self, capability: str) -> bool:
        return capability in self.capabilities


class SuiteConfig(BaseModel):
    """Top-level server configuration file"""
    model_config = ConfigDict(populate_by_name=True)

    servers: Dict[str, ServerTestConfig]
    testing_config: Dict[str, Any] = Field(default_factory=dict, alias="testingConfig")

    @model_validator(mode="after")
    def _require_servers(self):
        if not self.servers:
            raise ValueError("Configuration must contain at least one server")
        return self


class RunnerOptions(BaseModel):
    """Flat options object shared by the runner, browser manager and reporter"""
    headless: bool = False
    timeout: int = Field(default=30000, ge=0, description="Default selector wait in ms")
    retries: int = Field(default=2, ge=0)
    screenshot_on_failure: bool = True
    screenshot_dir: Path = Path("screenshots")
    output_dir: Path = Path("reports")
    record_video: bool = False

    inspector_command: List[str] = Field(
        default_factory=lambda: ["npx", "@modelcontextprotocol/inspector"]
    )
    inspector_cwd: Optional[Path] = None
    inspector_start_timeout: float = Field(default=30.0, gt=0)

    connect_interval: float = Field(default=1.0, ge=0)
    connect_max_attempts: int = Field(default=10, ge=1)
    connect_grace: float = Field(default=3.0, ge=0, description="Wait after clicking Connect")
    settle_delay: float = Field(default=1.5, ge=0, description="Wait after a tab switch")
    list_delay: float = Field(default=3.0, ge=0, description="Wait after a List button")
    select_delay: float = Field(default=2.0, ge=0, description="Wait after selecting an item")
    run_delay: float = Field(default=5.0, ge=0, description="Wait after Run Tool / Get Prompt")
    ping_timeout: int = Field(default=10000, ge=0)

    @classmethod
    def from_env(cls, **overrides) -> "RunnerOptions":
        """Build options from the environment; explicit overrides win"""
        values: Dict[str, Any] = {}
        if os.environ.get("HEADLESS", "").lower() == "true":
            values["headless"] = True
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def environment(self) -> Dict[str, Any]:
        """Subset of options recorded in the report"""
        return {
            "headless": self.headless,
            "timeout": self.timeout,
            "retries": self.retries,
        }


def _format_validation_error(e: ValidationError) -> str:
    error_details = []
    for error in e.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        error_details.append(f"Field '{field}': {error['msg']}")
    return "Config validation failed:\n" + "\n".join(error_details)


def validate_config(config_data: Dict[str, Any]) -> SuiteConfig:
    """
    Validate raw configuration data.

    Args:
        config_data: Parsed YAML/JSON document

    Returns:
        Validated SuiteConfig instance

    Raises:
        ConfigError: If the data does not describe a valid suite
    """
    if not isinstance(config_data, dict):
        raise ConfigError("Configuration must be a mapping with a 'servers' key")
    try:
        return SuiteConfig.model_validate(config_data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def load_config(config_file: Optional[Path] = None) -> SuiteConfig:
    """
    Load and validate a server configuration file (YAML or JSON).

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    config_path = Path(config_file) if config_file else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {config_path}: {e}") from e

    return validate_config(config_data)


def filter_servers(config: SuiteConfig, server_id: Optional[str] = None) -> Dict[str, ServerTestConfig]:
    """Return every configured server, or just ``server_id``"""
    if not server_id:
        return dict(config.servers)

    if server_id not in config.servers:
        available = ", ".join(config.servers)
        raise ValueError(f"Server '{server_id}' not found. Available servers: {available}")

    return {server_id: config.servers[server_id]}
