"""
MCP Inspector test runner.

Owns the Inspector subprocess and a UI driver, walks each configured
server through connect -> resources -> tools -> prompts -> progress scan
-> ping -> disconnect, and aggregates the results into a report.
"""
import asyncio
import math
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import selectors
from .browser import BrowserManager
from .errors import InspectorStartError, InspectorTimeoutError
from .logging_config import get_logger
from .models import (
    CAPABILITIES,
    ConnectionResult,
    ElicitationTest,
    PingResult,
    ProgressObservation,
    RunSummary,
    ServerTestResult,
    TestCaseResult,
    utc_now,
)
from .reporter import TestReporter
from .retry_logic import RetryConfig, retry_async
from .schema_validation import RunnerOptions, ServerTestConfig, ToolCase
from .ui_driver import UiDriver
from .validator import DataValidator

logger = get_logger("runner")


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def has_resource_content(data: Optional[Dict[str, Any]]) -> bool:
    """Heuristic: does the scraped page show a resource body, not just the list?"""
    if not data or not data.get("text"):
        return False
    return any(indicator in data["text"] for indicator in selectors.RESOURCE_CONTENT_INDICATORS)


def shows_progress(data: Optional[Dict[str, Any]]) -> bool:
    if not data or not isinstance(data.get("text"), str):
        return False
    return selectors.PROGRESS_NOTIFICATION_MARKER in data["text"]


class InspectorTestRunner:
    """Main orchestrator for automated MCP Inspector testing"""
    __test__ = False

    def __init__(
        self,
        options: Optional[RunnerOptions] = None,
        driver: Optional[UiDriver] = None,
        reporter: Optional[TestReporter] = None,
        validator: Optional[DataValidator] = None,
    ):
        self.options = options or RunnerOptions.from_env()
        self.driver = driver or BrowserManager(self.options)
        self.reporter = reporter or TestReporter(str(self.options.output_dir))
        self.validator = validator or DataValidator()

        self.inspector_process: Optional[asyncio.subprocess.Process] = None
        self.inspector_url: Optional[str] = None
        self.inspector_output = ""
        self._stream_tasks: List[asyncio.Task] = []
        self.test_results: List[ServerTestResult] = []

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def initialize(self) -> bool:
        """Bring up the browser and the reporter; call once per run"""
        logger.info("Initializing MCP Inspector test runner")
        await self.driver.initialize()
        self.driver.reset_screenshot_counter()
        self.reporter.initialize()
        logger.info("Test runner initialized successfully")
        return True

    async def start_inspector(self) -> str:
        """
        Spawn the Inspector and wait for it to print its URL.

        Raises:
            InspectorStartError: the process could not start or exited early
            InspectorTimeoutError: no URL within ``inspector_start_timeout``
        """
        command = self.options.inspector_command
        cwd = str(self.options.inspector_cwd) if self.options.inspector_cwd else None
        logger.info(f"Starting MCP Inspector: {' '.join(command)}")

        try:
            self.inspector_process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise InspectorStartError(f"Failed to start MCP Inspector: {e}") from e

        # The Inspector may sit on an interactive prompt before serving
        await self._nudge_stdin()
        self._stream_tasks.append(asyncio.create_task(self._log_stream(self.inspector_process.stderr, "stderr")))

        try:
            url = await asyncio.wait_for(
                self._read_inspector_url(), timeout=self.options.inspector_start_timeout
            )
        except asyncio.TimeoutError:
            raise InspectorTimeoutError(
                f"Timeout waiting for MCP Inspector to start ({self.options.inspector_start_timeout:g}s)"
            ) from None

        self.inspector_url = url
        # Keep the pipe drained so the Inspector never blocks on a full buffer
        self._stream_tasks.append(asyncio.create_task(self._log_stream(self.inspector_process.stdout, "stdout")))
        logger.info(f"MCP Inspector started at: {url}")
        return url

    async def _nudge_stdin(self) -> None:
        stdin = self.inspector_process.stdin
        if stdin is None:
            return
        try:
            stdin.write(b"\n")
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"Inspector stdin closed: {e}")

    async def _read_inspector_url(self) -> str:
        stdout = self.inspector_process.stdout
        while True:
            line = await stdout.readline()
            if not line:
                code = await self.inspector_process.wait()
                raise InspectorStartError(f"MCP Inspector exited with code {code}")

            self.inspector_output += line.decode(errors="replace")
            url = selectors.extract_inspector_url(self.inspector_output)
            if url:
                return url

    async def _log_stream(self, stream: Optional[asyncio.StreamReader], label: str) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            logger.debug(f"Inspector {label}: {line.decode(errors='replace').rstrip()}")

    async def cleanup(self) -> None:
        """Tear down the browser and stop the Inspector; each step best-effort"""
        logger.info("Cleaning up test environment")

        try:
            await self.driver.cleanup()
        except Exception as e:
            logger.error(f"Error during browser cleanup: {e}")

        try:
            await self._stop_inspector()
        except Exception as e:
            logger.error(f"Error stopping MCP Inspector: {e}")

        for task in self._stream_tasks:
            task.cancel()
        await asyncio.gather(*self._stream_tasks, return_exceptions=True)
        self._stream_tasks = []

    async def _stop_inspector(self) -> None:
        process = self.inspector_process
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("MCP Inspector ignored SIGTERM, killing it")
            process.kill()
            await process.wait()
        logger.info("MCP Inspector process terminated")

    # ============================================================
    # PER-SERVER STATE MACHINE
    # ============================================================

    def _navigation_retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.options.retries + 1,
            base_delay=1.0,
            max_delay=10.0,
            retryable_exceptions=[asyncio.TimeoutError, *self.driver.retryable_errors],
        )

    async def test_server(self, server_config: ServerTestConfig) -> ServerTestResult:
        """Run every capability phase against one server; never raises"""
        logger.info(f"Testing {server_config.name}...")

        result = ServerTestResult(serverName=server_config.name, serverPath=server_config.path)
        for capability in CAPABILITIES:
            result.capabilities[capability].expected = server_config.expected_count(capability)

        try:
            if not self.inspector_url:
                raise InspectorStartError("MCP Inspector is not running; call start_inspector() first")

            try:
                await retry_async(
                    self.driver.navigate_to_inspector, self.inspector_url, config=self._navigation_retry()
                )
                await self.driver.connect_to_server(server_config.path)
            except Exception as e:
                result.connection = ConnectionResult(status="failed", error=str(e))
                raise
            result.connection = ConnectionResult(status="success")

            phases = (
                ("resources", self.test_resources),
                ("tools", self.test_tools),
                ("prompts", self.test_prompts),
            )
            for capability, phase in phases:
                if not server_config.has_capability(capability):
                    continue
                try:
                    await phase(server_config, result)
                except Exception as e:
                    logger.error(f"{capability.capitalize()} test error: {e}")
                    result.add_error(capability, str(e))

            self.check_progress_notifications(result)

            try:
                await self.test_ping(result)
            except Exception as e:
                logger.error(f"Ping test error: {e}")
                result.add_error("ping", str(e))

            result.status = "failed" if result.has_failures() else "completed"
        except Exception as e:
            logger.error(f"Error testing {server_config.name}: {e}")
            result.status = "failed"
            result.add_error("general", str(e))

            if self.options.screenshot_on_failure:
                screenshot = await self.driver.capture_screenshot(f"{server_config.name}-error")
                if screenshot:
                    result.screenshots.append(screenshot)

        result.end_time = utc_now()

        # Next server must start from a clean UI
        try:
            await self.driver.disconnect()
        except Exception as e:
            logger.warning(f"Could not disconnect cleanly: {e}")

        self.test_results.append(result)
        return result

    async def test_resources(self, server_config: ServerTestConfig, result: ServerTestResult) -> None:
        logger.info("Testing Resources...")
        await self.driver.navigate_to_tab(selectors.TAB_RESOURCES)
        capability = result.capabilities["resources"]

        for resource_name in server_config.test_cases.resources:
            test = TestCaseResult(name=resource_name)
            start = time.monotonic()
            try:
                success = await self.driver.click_resource(resource_name)
                test.response_time = elapsed_ms(start)
                test.data_extracted = await self.driver.extract_current_data()

                if not success:
                    test.status = "failed"
                    test.error = f"Resource '{resource_name}' not found in list"
                elif has_resource_content(test.data_extracted):
                    test.status = "success"
                else:
                    test.status = "success"
                    test.note = "Resource selected but content may not have loaded"
            except Exception as e:
                test.status = "failed"
                test.error = str(e)
                test.response_time = elapsed_ms(start)

            logger.info(f"  Resource {resource_name}: {test.status} ({test.response_time}ms)")
            capability.record(test)

    async def test_tools(self, server_config: ServerTestConfig, result: ServerTestResult) -> None:
        logger.info("Testing Tools...")
        await self.driver.navigate_to_tab(selectors.TAB_TOOLS)
        capability = result.capabilities["tools"]

        for tool_case in server_config.test_cases.tools:
            test = TestCaseResult(
                name=tool_case.name,
                hasProgressNotifications=tool_case.has_progress_notifications,
                requiresElicitation=tool_case.requires_elicitation,
            )
            start = time.monotonic()
            try:
                if tool_case.requires_elicitation:
                    await self.execute_elicitation_tool(tool_case, test, result)
                elif await self.driver.execute_tool(tool_case.name, tool_case.args):
                    test.status = "success"
                else:
                    test.status = "failed"
                    test.error = f"Tool '{tool_case.name}' could not be run or reported an error"

                test.response_time = elapsed_ms(start)
                test.data_extracted = await self.driver.extract_current_data()
            except Exception as e:
                test.status = "failed"
                test.error = str(e)
                test.response_time = elapsed_ms(start)

            logger.info(f"  Tool {tool_case.name}: {test.status} ({test.response_time}ms)")
            capability.record(test)

    async def test_prompts(self, server_config: ServerTestConfig, result: ServerTestResult) -> None:
        logger.info("Testing Prompts...")
        await self.driver.navigate_to_tab(selectors.TAB_PROMPTS)
        capability = result.capabilities["prompts"]

        for prompt_case in server_config.test_cases.prompts:
            test = TestCaseResult(name=prompt_case.name)
            start = time.monotonic()
            try:
                if await self.driver.execute_prompt(prompt_case.name, prompt_case.args):
                    test.status = "success"
                else:
                    test.status = "failed"
                    test.error = f"Prompt '{prompt_case.name}' not found in list"

                test.response_time = elapsed_ms(start)
                test.data_extracted = await self.driver.extract_current_data()
            except Exception as e:
                test.status = "failed"
                test.error = str(e)
                test.response_time = elapsed_ms(start)

            logger.info(f"  Prompt {prompt_case.name}: {test.status} ({test.response_time}ms)")
            capability.record(test)

    async def execute_elicitation_tool(
        self, tool_case: ToolCase, test: TestCaseResult, result: ServerTestResult
    ) -> None:
        """Run a tool that asks for input, then answer it from the Elicitations tab"""
        elicitation = ElicitationTest(toolName=tool_case.name)
        try:
            if not await self.driver.execute_tool(tool_case.name, tool_case.args):
                raise RuntimeError(f"Tool '{tool_case.name}' could not be run or reported an error")
            await self.driver.navigate_to_tab(selectors.TAB_ELICITATIONS)
            await self.driver.handle_elicitation(tool_case.elicitation_form)
        except Exception as e:
            elicitation.status = "failed"
            elicitation.error = str(e)
            result.elicitation.tests.append(elicitation)
            raise

        elicitation.status = "success"
        elicitation.form_handled = True
        result.elicitation.supported = True
        result.elicitation.tests.append(elicitation)

        test.form_handled = True
        test.status = "success"

    def check_progress_notifications(self, result: ServerTestResult) -> None:
        """Scan already-scraped tool output for progress notification traces"""
        progress = result.progress_notifications
        for test in result.capabilities["tools"].tests:
            if shows_progress(test.data_extracted):
                progress.supported = True
                progress.tests.append(ProgressObservation(toolName=test.name))
                logger.info(f"  Progress notifications detected for tool: {test.name}")

        if not progress.tests:
            logger.info("  No progress notifications detected")

    async def test_ping(self, result: ServerTestResult) -> PingResult:
        logger.info("Testing Ping...")
        ping = PingResult()
        start = time.monotonic()
        try:
            outcome = await self.driver.ping()
            ping.response_time = elapsed_ms(start)
            ping.status = "success"
            if outcome.get("matched") == "response":
                ping.note = "No explicit success marker; response content was shown"
            logger.info(f"  Ping successful: {ping.response_time}ms")
        except Exception as e:
            ping.response_time = elapsed_ms(start)
            ping.status = "failed"
            ping.error = str(e)
            logger.warning(f"  Ping failed: {e}")

        result.ping = ping
        return ping

    # ============================================================
    # AGGREGATION
    # ============================================================

    def generate_summary(self) -> RunSummary:
        total_servers = len(self.test_results)
        successful_servers = sum(
            1 for r in self.test_results if r.status == "completed" and not r.errors
        )

        total_tests = passed_tests = failed_tests = 0
        for server in self.test_results:
            for test in server.all_cases():
                total_tests += 1
                if test.status == "success":
                    passed_tests += 1
                elif test.status == "failed":
                    failed_tests += 1

            if server.ping is not None:
                total_tests += 1
                if server.ping.status == "success":
                    passed_tests += 1
                else:
                    failed_tests += 1

        success_rate = math.floor(passed_tests / total_tests * 100 + 0.5) if total_tests else 0

        return RunSummary(
            totalServers=total_servers,
            successfulServers=successful_servers,
            failedServers=total_servers - successful_servers,
            totalTests=total_tests,
            passedTests=passed_tests,
            failedTests=failed_tests,
            successRate=success_rate,
        )

    def validate_results(self) -> Dict[str, Any]:
        return self.validator.validate_test_results(self.test_results)

    async def generate_report(self, validation: Optional[Dict[str, Any]] = None) -> Path:
        """Bundle summary, results and environment; persistence is the reporter's job"""
        report_data = {
            "summary": self.generate_summary().to_dict(),
            "testResults": [result.to_dict() for result in self.test_results],
            "timestamp": utc_now(),
            "environment": self.options.environment(),
        }
        if validation is not None:
            report_data["validation"] = validation

        try:
            report_path = self.reporter.generate_report(report_data)
        except Exception as e:
            logger.error(f"Failed to generate report: {e}")
            raise

        logger.info(f"Test report generated: {report_path}")
        return report_path

    async def run(self, servers: Dict[str, ServerTestConfig]) -> Dict[str, Any]:
        """
        Full run: initialize, start the Inspector, test every server in
        order, validate, report. Cleanup always happens.
        """
        try:
            await self.initialize()
            await self.start_inspector()

            total = len(servers)
            for index, server_config in enumerate(servers.values(), 1):
                logger.info(f"[{index}/{total}] Testing {server_config.name}")
                await self.test_server(server_config)

            validation = self.validate_results()
            report_path = await self.generate_report(validation)
            return {
                "summary": self.generate_summary(),
                "results": list(self.test_results),
                "validation": validation,
                "reportPath": report_path,
            }
        finally:
            await self.cleanup()
