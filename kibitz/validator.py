"""
Structural validation for Inspector test results.

Collects every problem in one pass instead of failing fast. Schema
violations are errors (``isValid`` false); suspicious but conformant
data (count drift, slow responses, future timestamps, failures without a
message) are warnings.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .logging_config import get_logger
from .models import CAPABILITIES, ERROR_TYPES

logger = get_logger("validator")

SERVER_STATUSES = ("completed", "failed", "unknown")
TEST_STATUSES = ("success", "failed", "unknown")

MAX_RESPONSE_TIME_MS = 300000  # 5 minutes
FUTURE_TOLERANCE = timedelta(minutes=1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_tree(value: Any) -> Any:
    """Pydantic result models are validated in their serialized form"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, list):
        return [_as_tree(item) for item in value]
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed); naive values are UTC"""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DataValidator:
    """Validates result trees; accumulators are reset by every top-level call"""

    def __init__(
        self,
        strict_mode: bool = False,
        validate_timestamps: bool = True,
        validate_response_times: bool = True,
    ):
        self.strict_mode = strict_mode
        self.validate_timestamps = validate_timestamps
        self.validate_response_times = validate_response_times

        self.validation_errors: List[Dict[str, Any]] = []
        self.validation_warnings: List[Dict[str, Any]] = []

    # ============================================================
    # TOP-LEVEL ENTRY POINTS
    # ============================================================

    def validate_test_results(self, test_results: Any) -> Dict[str, Any]:
        """Validate a list of server results"""
        self.reset()
        test_results = _as_tree(test_results)

        if not isinstance(test_results, list):
            self.add_error("Test results must be an array")
            return self.get_validation_result()

        for index, server in enumerate(test_results):
            self.validate_server_result(server, index)

        result = self.get_validation_result()
        logger.info(
            f"Validation completed: {result['summary']['errorCount']} errors, "
            f"{result['summary']['warningCount']} warnings"
        )
        return result

    def validate_tool_response(self, response_data: Any, tool_name: str) -> Dict[str, Any]:
        """Check the scraped payload of a single tool run"""
        self.reset()
        logger.debug(f"Validating tool response for {tool_name}")

        if not response_data:
            self.add_error(f"{tool_name}: No response data received")
            return self.get_validation_result()
        if not isinstance(response_data, dict):
            self.add_error(f"{tool_name}: response data must be an object")
            return self.get_validation_result()

        extracted = response_data.get("extractedJson")
        if isinstance(extracted, list):
            for index, json_data in enumerate(extracted):
                self.validate_mcp_response_structure(json_data, f"{tool_name} JSON response {index + 1}")

        if "text" in response_data and not isinstance(response_data["text"], str):
            self.add_error(f"{tool_name}: response text must be a string")

        if response_data.get("timestamp"):
            self.validate_timestamp(response_data["timestamp"], f"{tool_name} response timestamp")

        self._check_skipped_blocks(response_data, tool_name)
        return self.get_validation_result()

    def validate_resource_response(self, response_data: Any, resource_name: str) -> Dict[str, Any]:
        """Check the scraped payload of a single resource read"""
        self.reset()
        logger.debug(f"Validating resource response for {resource_name}")

        if not response_data:
            self.add_error(f"{resource_name}: No response data received")
            return self.get_validation_result()
        if not isinstance(response_data, dict):
            self.add_error(f"{resource_name}: response data must be an object")
            return self.get_validation_result()

        for index, json_data in enumerate(response_data.get("extractedJson") or []):
            context = f"{resource_name} JSON {index + 1}"
            if not isinstance(json_data, dict):
                continue
            if "uri" in json_data and not isinstance(json_data["uri"], str):
                self.add_error(f"{context}: uri must be a string")
            if "mimeType" in json_data and not isinstance(json_data["mimeType"], str):
                self.add_error(f"{context}: mimeType must be a string")
            self.validate_mcp_response_structure(json_data, context)

        self._check_skipped_blocks(response_data, resource_name)
        return self.get_validation_result()

    # ============================================================
    # SERVER TREE
    # ============================================================

    def validate_server_result(self, server: Any, index: int) -> None:
        if not isinstance(server, dict):
            self.add_error(f"Server {index + 1}: result must be an object")
            return

        context = f"Server {index + 1} ({server.get('serverName') or 'unnamed'})"

        self.validate_required(server, "serverName", context)
        self.validate_required(server, "status", context)
        self.validate_required(server, "capabilities", context)

        status = server.get("status")
        if status is not None and status not in SERVER_STATUSES:
            self.add_error(
                f"{context}: Invalid status '{status}'. Must be one of: {', '.join(SERVER_STATUSES)}"
            )

        if self.validate_timestamps:
            start_time = server.get("startTime")
            end_time = server.get("endTime")
            if start_time is not None:
                self.validate_timestamp(start_time, f"{context} startTime")
            if end_time is not None:
                self.validate_timestamp(end_time, f"{context} endTime")
                self.validate_time_order(start_time, end_time, f"{context} time order")

        if server.get("capabilities") is not None:
            self.validate_capabilities(server["capabilities"], context)
        if server.get("connection") is not None:
            self.validate_connection(server["connection"], context)
        if server.get("elicitation") is not None:
            self.validate_elicitation(server["elicitation"], context)
        if server.get("progressNotifications") is not None:
            self.validate_progress_notifications(server["progressNotifications"], context)
        if server.get("ping") is not None:
            self.validate_ping(server["ping"], context)
        if server.get("errors") is not None:
            self.validate_errors_list(server["errors"], context)
        if server.get("screenshots") is not None:
            self.validate_screenshots(server["screenshots"], context)

    def validate_capabilities(self, capabilities: Any, context: str) -> None:
        if not isinstance(capabilities, dict):
            self.add_error(f"{context}: capabilities must be an object")
            return

        for capability in CAPABILITIES:
            cap = capabilities.get(capability)
            cap_context = f"{context} {capability}"
            if cap is None:
                self.add_error(f"{context}: Missing capability '{capability}'")
                continue
            if not isinstance(cap, dict):
                self.add_error(f"{cap_context}: must be an object")
                continue

            for field in ("expected", "actual", "tests"):
                self.validate_required(cap, field, cap_context)

            if "expected" in cap and cap["expected"] is not None:
                if not _is_number(cap["expected"]) or cap["expected"] < 0:
                    self.add_error(f"{cap_context}: expected must be a non-negative number")
            if "actual" in cap and cap["actual"] is not None:
                if not _is_number(cap["actual"]) or cap["actual"] < 0:
                    self.add_error(f"{cap_context}: actual must be a non-negative number")

            tests = cap.get("tests")
            if tests is None:
                continue
            if not isinstance(tests, list):
                self.add_error(f"{cap_context}: tests must be an array")
                continue

            for test_index, test in enumerate(tests):
                self.validate_test(test, f"{cap_context} test {test_index + 1}")

            # Drift between the counter and the list is bookkeeping, not structure
            if _is_number(cap.get("actual")) and len(tests) != cap["actual"]:
                self.add_warning(
                    f"{cap_context}: tests array length ({len(tests)}) doesn't match actual count ({cap['actual']})"
                )

    def validate_test(self, test: Any, context: str) -> None:
        if not isinstance(test, dict):
            self.add_error(f"{context}: test result must be an object")
            return

        self.validate_required(test, "name", context)
        self.validate_required(test, "status", context)
        self.validate_required(test, "timestamp", context)

        status = test.get("status")
        if status is not None and status not in TEST_STATUSES:
            self.add_error(f"{context}: Invalid status '{status}'. Must be one of: {', '.join(TEST_STATUSES)}")

        self._check_response_time(test.get("responseTime"), context)

        if self.validate_timestamps and test.get("timestamp") is not None:
            self.validate_timestamp(test["timestamp"], f"{context} timestamp")

        if status == "failed" and not test.get("error"):
            self.add_warning(f"{context}: Failed test should include error message")

    def validate_connection(self, connection: Any, context: str) -> None:
        conn_context = f"{context} connection"
        if not isinstance(connection, dict):
            self.add_error(f"{conn_context}: must be an object")
            return

        self.validate_required(connection, "status", conn_context)
        self.validate_required(connection, "timestamp", conn_context)

        if self.validate_timestamps and connection.get("timestamp") is not None:
            self.validate_timestamp(connection["timestamp"], f"{conn_context} timestamp")

    def validate_elicitation(self, elicitation: Any, context: str) -> None:
        el_context = f"{context} elicitation"
        if not isinstance(elicitation, dict):
            self.add_error(f"{el_context}: must be an object")
            return

        self.validate_required(elicitation, "supported", el_context)
        self.validate_required(elicitation, "tests", el_context)

        if "supported" in elicitation and not isinstance(elicitation["supported"], bool):
            self.add_error(f"{el_context}: supported must be a boolean")

        tests = elicitation.get("tests")
        if tests is None:
            return
        if not isinstance(tests, list):
            self.add_error(f"{el_context}: tests must be an array")
            return

        for test_index, test in enumerate(tests):
            self.validate_elicitation_test(test, f"{el_context} test {test_index + 1}")

    def validate_elicitation_test(self, test: Any, context: str) -> None:
        if not isinstance(test, dict):
            self.add_error(f"{context}: must be an object")
            return

        for field in ("toolName", "status", "timestamp", "formHandled"):
            self.validate_required(test, field, context)

        if "formHandled" in test and not isinstance(test["formHandled"], bool):
            self.add_error(f"{context}: formHandled must be a boolean")

        if self.validate_timestamps and test.get("timestamp") is not None:
            self.validate_timestamp(test["timestamp"], f"{context} timestamp")

    def validate_progress_notifications(self, progress: Any, context: str) -> None:
        pr_context = f"{context} progress"
        if not isinstance(progress, dict):
            self.add_error(f"{pr_context}: must be an object")
            return

        self.validate_required(progress, "supported", pr_context)
        self.validate_required(progress, "tests", pr_context)

        if "supported" in progress and not isinstance(progress["supported"], bool):
            self.add_error(f"{pr_context}: supported must be a boolean")
        if "tests" in progress and not isinstance(progress["tests"], list):
            self.add_error(f"{pr_context}: tests must be an array")

    def validate_ping(self, ping: Any, context: str) -> None:
        ping_context = f"{context} ping"
        if not isinstance(ping, dict):
            self.add_error(f"{ping_context}: must be an object")
            return

        self.validate_required(ping, "status", ping_context)
        self.validate_required(ping, "timestamp", ping_context)

        status = ping.get("status")
        if status is not None and status not in TEST_STATUSES:
            self.add_error(f"{ping_context}: Invalid status '{status}'. Must be one of: {', '.join(TEST_STATUSES)}")

        if self.validate_timestamps and ping.get("timestamp") is not None:
            self.validate_timestamp(ping["timestamp"], f"{ping_context} timestamp")

        self._check_response_time(ping.get("responseTime"), ping_context)

    def validate_errors_list(self, errors: Any, context: str) -> None:
        if not isinstance(errors, list):
            self.add_error(f"{context}: errors must be an array")
            return

        for error_index, error in enumerate(errors):
            error_context = f"{context} error {error_index + 1}"
            if not isinstance(error, dict):
                self.add_error(f"{error_context}: must be an object")
                continue

            self.validate_required(error, "type", error_context)
            self.validate_required(error, "message", error_context)
            self.validate_required(error, "timestamp", error_context)

            error_type = error.get("type")
            if error_type is not None and error_type not in ERROR_TYPES:
                self.add_error(f"{error_context}: Invalid type '{error_type}'. Must be one of: {', '.join(ERROR_TYPES)}")

            if self.validate_timestamps and error.get("timestamp") is not None:
                self.validate_timestamp(error["timestamp"], f"{error_context} timestamp")

    def validate_screenshots(self, screenshots: Any, context: str) -> None:
        if not isinstance(screenshots, list):
            self.add_error(f"{context}: screenshots must be an array")
            return

        for index, screenshot in enumerate(screenshots):
            if not isinstance(screenshot, str):
                self.add_error(f"{context} screenshot {index + 1}: must be a string path")
            elif not screenshot.strip():
                self.add_error(f"{context} screenshot {index + 1}: cannot be empty")

    def validate_mcp_response_structure(self, data: Any, context: str) -> None:
        """Sanity checks on a JSON block scraped out of the Inspector"""
        if not isinstance(data, dict):
            return

        content = data.get("content")
        if isinstance(content, list):
            for index, item in enumerate(content):
                if not isinstance(item, dict):
                    continue
                if "type" in item and not isinstance(item["type"], str):
                    self.add_error(f"{context} content {index + 1}: type must be a string")
                if "text" in item and not isinstance(item["text"], str):
                    self.add_error(f"{context} content {index + 1}: text must be a string")

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else None
            self.add_warning(f"{context}: Response contains error - {message or 'Unknown error'}")

        if "progress" in data:
            progress = data["progress"]
            if not _is_number(progress) or progress < 0 or progress > 100:
                self.add_error(f"{context}: progress must be a number between 0 and 100")

    # ============================================================
    # HELPERS
    # ============================================================

    def _check_response_time(self, response_time: Any, context: str) -> None:
        if not self.validate_response_times or response_time is None:
            return
        if not _is_number(response_time) or response_time < 0:
            self.add_error(f"{context}: responseTime must be a non-negative number")
        elif response_time > MAX_RESPONSE_TIME_MS:
            self.add_warning(f"{context}: responseTime ({response_time}ms) seems unusually high")

    def _check_skipped_blocks(self, response_data: Dict[str, Any], context: str) -> None:
        skipped = response_data.get("skippedBlocks")
        if _is_number(skipped) and skipped > 0:
            self.add_warning(f"{context}: {skipped} JSON-looking block(s) could not be parsed")

    def validate_required(self, obj: Dict[str, Any], field: str, context: str) -> None:
        if obj.get(field) is None:
            self.add_error(f"{context}: Missing required field '{field}'")

    def validate_timestamp(self, timestamp: Any, context: str) -> None:
        if not timestamp:
            self.add_error(f"{context}: Missing timestamp")
            return

        parsed = parse_timestamp(timestamp)
        if parsed is None:
            self.add_error(f"{context}: Invalid timestamp format '{timestamp}'")
            return

        if parsed > datetime.now(timezone.utc) + FUTURE_TOLERANCE:
            self.add_warning(f"{context}: Timestamp is in the future")

    def validate_time_order(self, start_time: Any, end_time: Any, context: str) -> None:
        start = parse_timestamp(start_time)
        end = parse_timestamp(end_time)
        if start is None or end is None:
            return
        if end < start:
            self.add_error(f"{context}: End time is before start time")

    def add_error(self, message: str) -> None:
        self.validation_errors.append({"type": "error", "message": message})

    def add_warning(self, message: str) -> None:
        if self.strict_mode:
            self.add_error(message)
            return
        self.validation_warnings.append({"type": "warning", "message": message})

    def get_validation_result(self) -> Dict[str, Any]:
        return {
            "isValid": not self.validation_errors,
            "errors": list(self.validation_errors),
            "warnings": list(self.validation_warnings),
            "summary": {
                "errorCount": len(self.validation_errors),
                "warningCount": len(self.validation_warnings),
            },
        }

    def reset(self) -> None:
        self.validation_errors = []
        self.validation_warnings = []
