from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

CAPABILITIES = ("tools", "resources", "prompts")
ERROR_TYPES = ("resources", "tools", "prompts", "elicitation", "ping", "general")

ServerStatus = Literal["completed", "failed", "unknown"]
CaseStatus = Literal["success", "failed", "unknown"]


def utc_now() -> str:
    """ISO-8601 timestamp used throughout the result tree"""
    return datetime.now(timezone.utc).isoformat()


class ResultModel(BaseModel):
    """Results serialize with the camelCase keys the report consumers expect"""
    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TestCaseResult(ResultModel):
    """One resource/tool/prompt case"""
    __test__ = False

    name: str
    status: CaseStatus = "unknown"
    timestamp: str = Field(default_factory=utc_now)
    response_time: Optional[int] = Field(default=None, alias="responseTime")
    error: Optional[str] = None
    data_extracted: Optional[Dict[str, Any]] = Field(default=None, alias="dataExtracted")
    note: Optional[str] = None
    # Tool-only flags
    has_progress_notifications: Optional[bool] = Field(default=None, alias="hasProgressNotifications")
    requires_elicitation: Optional[bool] = Field(default=None, alias="requiresElicitation")
    form_handled: Optional[bool] = Field(default=None, alias="formHandled")


class CapabilityResult(ResultModel):
    expected: int = 0
    actual: int = 0
    tests: List[TestCaseResult] = Field(default_factory=list)

    def record(self, test: TestCaseResult) -> None:
        """Append a case and bump ``actual`` so the two never drift"""
        self.tests.append(test)
        self.actual += 1


class ConnectionResult(ResultModel):
    status: Literal["success", "failed"]
    timestamp: str = Field(default_factory=utc_now)
    error: Optional[str] = None


class ElicitationTest(ResultModel):
    tool_name: str = Field(alias="toolName")
    status: CaseStatus = "unknown"
    timestamp: str = Field(default_factory=utc_now)
    form_handled: bool = Field(default=False, alias="formHandled")
    error: Optional[str] = None


class ElicitationResult(ResultModel):
    supported: bool = False
    tests: List[ElicitationTest] = Field(default_factory=list)


class ProgressObservation(ResultModel):
    tool_name: str = Field(alias="toolName")
    status: CaseStatus = "success"
    timestamp: str = Field(default_factory=utc_now)
    progress_notifications_seen: bool = Field(default=True, alias="progressNotificationsSeen")


class ProgressNotificationsResult(ResultModel):
    supported: bool = False
    tests: List[ProgressObservation] = Field(default_factory=list)


class PingResult(ResultModel):
    status: CaseStatus = "unknown"
    timestamp: str = Field(default_factory=utc_now)
    response_time: Optional[int] = Field(default=None, alias="responseTime")
    error: Optional[str] = None
    note: Optional[str] = None


class ErrorEntry(ResultModel):
    type: Literal["resources", "tools", "prompts", "elicitation", "ping", "general"]
    message: str
    timestamp: str = Field(default_factory=utc_now)


def _empty_capabilities() -> Dict[str, CapabilityResult]:
    return {capability: CapabilityResult() for capability in CAPABILITIES}


class ServerTestResult(ResultModel):
    """Everything observed while testing one server"""
    server_name: str = Field(alias="serverName")
    server_path: str = Field(alias="serverPath")
    start_time: str = Field(default_factory=utc_now, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    status: ServerStatus = "unknown"
    connection: Optional[ConnectionResult] = None
    capabilities: Dict[str, CapabilityResult] = Field(default_factory=_empty_capabilities)
    elicitation: ElicitationResult = Field(default_factory=ElicitationResult)
    progress_notifications: ProgressNotificationsResult = Field(
        default_factory=ProgressNotificationsResult, alias="progressNotifications"
    )
    ping: Optional[PingResult] = None
    errors: List[ErrorEntry] = Field(default_factory=list)
    screenshots: List[str] = Field(default_factory=list)

    def add_error(self, error_type: str, message: str) -> ErrorEntry:
        entry = ErrorEntry(type=error_type, message=message)
        self.errors.append(entry)
        return entry

    def all_cases(self) -> List[TestCaseResult]:
        return [test for capability in CAPABILITIES for test in self.capabilities[capability].tests]

    def has_failures(self) -> bool:
        """A failed case, a failed ping, or any recorded error fails the server"""
        if any(test.status == "failed" for test in self.all_cases()):
            return True
        if self.ping is not None and self.ping.status == "failed":
            return True
        return bool(self.errors)


class RunSummary(ResultModel):
    total_servers: int = Field(default=0, alias="totalServers")
    successful_servers: int = Field(default=0, alias="successfulServers")
    failed_servers: int = Field(default=0, alias="failedServers")
    total_tests: int = Field(default=0, alias="totalTests")
    passed_tests: int = Field(default=0, alias="passedTests")
    failed_tests: int = Field(default=0, alias="failedTests")
    success_rate: int = Field(default=0, alias="successRate")
