"""
InspectorTestRunner tests: the per-server state machine, aggregation,
and Inspector process handling, all against in-memory fakes.
"""

import asyncio

import pytest

from kibitz.errors import InspectorStartError, InspectorTimeoutError, ServerConnectionError
from kibitz.models import PingResult, ServerTestResult, TestCaseResult
from kibitz.reporter import TestReporter, load_report
from kibitz.runner import InspectorTestRunner, has_resource_content
from kibitz.validator import DataValidator

from .conftest import FakeDriver


INSPECTOR_URL = "http://localhost:6274/?MCP_PROXY_AUTH_TOKEN=abc123"


def make_runner(options, driver=None):
	runner = InspectorTestRunner(
		options,
		driver=driver or FakeDriver(),
		reporter=TestReporter(str(options.output_dir)),
	)
	runner.inspector_url = INSPECTOR_URL
	return runner


def tab_sequence(driver):
	return [call[1] for call in driver.calls if call[0] == "tab"]


# ============================================================
# FAKE INSPECTOR PROCESS
# ============================================================


class FakeStdin:

	def __init__(self):
		self.written = b""

	def write(self, data):
		self.written += data

	async def drain(self):
		return None


class FakeProcess:
	"""Subprocess double with real StreamReaders for stdout/stderr."""

	def __init__(self, lines=(), exit_code=None):
		self.stdin = FakeStdin()
		self.stdout = asyncio.StreamReader()
		self.stderr = asyncio.StreamReader()
		self.stderr.feed_eof()
		for line in lines:
			self.stdout.feed_data(line.encode())
		if exit_code is not None:
			self.stdout.feed_eof()

		self.returncode = None
		self.exit_code = exit_code
		self.terminated = False
		self._exited = asyncio.Event()

	async def wait(self):
		if self.exit_code is not None:
			self.returncode = self.exit_code
			return self.returncode
		await self._exited.wait()
		return self.returncode

	def terminate(self):
		self.terminated = True
		self.returncode = -15
		self._exited.set()

	def kill(self):
		self.terminate()


@pytest.fixture
def spawn(monkeypatch):
	"""Route create_subprocess_exec to a prepared FakeProcess."""
	spawned = {}

	def install(process=None, error=None):
		async def fake_exec(*command, **kwargs):
			spawned["command"] = list(command)
			spawned["kwargs"] = kwargs
			if error is not None:
				raise error
			return process

		monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
		return spawned

	return install


# ============================================================
# PER-SERVER STATE MACHINE
# ============================================================


class TestServerFlow:
	"""connect -> resources -> tools -> prompts -> progress -> ping -> disconnect"""

	@pytest.mark.asyncio
	async def test_full_pass(self, fast_options, knowledge_config):
		driver = FakeDriver(texts={
			"knowledge_base_stats": "Total Documents: 12\nCategories: 4",
			"bulk_knowledge_processing": "notifications/progress {progress: 50}",
		})
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)

		assert result.status == "completed"
		assert result.connection.status == "success"
		assert result.errors == []
		assert result.end_time is not None
		assert runner.test_results == [result]

		capabilities = result.capabilities
		assert (capabilities["resources"].expected, capabilities["resources"].actual) == (2, 2)
		assert (capabilities["tools"].expected, capabilities["tools"].actual) == (3, 3)
		assert (capabilities["prompts"].expected, capabilities["prompts"].actual) == (1, 1)
		assert all(test.response_time is not None for test in result.all_cases())

		assert tab_sequence(driver) == ["Resources", "Tools", "Elicitations", "Prompts"]
		assert driver.calls[1] == ("connect", knowledge_config.path)
		assert driver.calls[-2] == ("ping",)
		assert driver.calls[-1] == ("disconnect",)

	@pytest.mark.asyncio
	async def test_full_pass_validates_cleanly(self, fast_options, knowledge_config):
		runner = make_runner(fast_options, FakeDriver(default_text="Statistics"))

		result = await runner.test_server(knowledge_config)
		validation = DataValidator().validate_test_results([result])

		assert validation["isValid"] is True
		assert validation["warnings"] == []

	@pytest.mark.asyncio
	async def test_connection_failure_is_recorded(self, fast_options, knowledge_config):
		"""The polling budget runs out; the run carries on."""
		driver = FakeDriver(connect_error=ServerConnectionError(knowledge_config.path, 10, 1.0))
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)

		assert result.status == "failed"
		assert result.connection.status == "failed"
		assert "Server connection failed" in result.connection.error
		assert [e.type for e in result.errors] == ["general"]
		assert len(result.screenshots) == 1
		assert tab_sequence(driver) == []
		assert driver.calls[-1] == ("disconnect",)
		assert DataValidator().validate_test_results([result])["isValid"] is True

	@pytest.mark.asyncio
	async def test_navigation_failure_is_recorded_as_connection(self, fast_options, knowledge_config):
		driver = FakeDriver(navigate_error=RuntimeError("landmark never appeared"))
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)

		assert result.status == "failed"
		assert result.connection is not None
		assert result.connection.status == "failed"
		assert result.connection.error == "landmark never appeared"
		assert ("connect", knowledge_config.path) not in driver.calls
		assert driver.calls[-1] == ("disconnect",)

	@pytest.mark.asyncio
	async def test_no_screenshot_when_disabled(self, fast_options, knowledge_config):
		options = fast_options.model_copy(update={"screenshot_on_failure": False})
		driver = FakeDriver(connect_error=RuntimeError("form missing"))
		runner = make_runner(options, driver)

		result = await runner.test_server(knowledge_config)

		assert result.screenshots == []

	@pytest.mark.asyncio
	async def test_inspector_not_started(self, fast_options, knowledge_config):
		runner = make_runner(fast_options)
		runner.inspector_url = None

		result = await runner.test_server(knowledge_config)

		assert result.status == "failed"
		assert "not running" in result.errors[0].message

	@pytest.mark.asyncio
	async def test_phase_failure_is_isolated(self, fast_options, knowledge_config):
		driver = FakeDriver(failing_tabs=("Resources",))
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)

		assert result.status == "failed"
		assert [e.type for e in result.errors] == ["resources"]
		assert result.capabilities["resources"].tests == []
		assert result.capabilities["tools"].actual == 3
		assert result.capabilities["prompts"].actual == 1

	@pytest.mark.asyncio
	async def test_capabilities_not_declared_are_skipped(self, fast_options, tools_only_config):
		driver = FakeDriver()
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(tools_only_config)

		assert tab_sequence(driver) == ["Tools"]
		assert result.capabilities["resources"].expected == 0
		assert result.status == "completed"


class TestCaseOutcomes:
	"""Individual resource/tool/prompt outcomes."""

	@pytest.mark.asyncio
	async def test_missing_resource_fails_with_message(self, fast_options, knowledge_config):
		runner = make_runner(fast_options, FakeDriver(missing=("recent_documents",)))

		result = await runner.test_server(knowledge_config)
		recent = result.capabilities["resources"].tests[1]

		assert recent.status == "failed"
		assert "not found" in recent.error

	@pytest.mark.asyncio
	async def test_resource_without_content_gets_note(self, fast_options, knowledge_config):
		driver = FakeDriver(texts={"knowledge_base_stats": "Recent Activity"})
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		stats, recent = result.capabilities["resources"].tests

		assert stats.status == "success" and stats.note is None
		assert recent.status == "success"
		assert "may not have loaded" in recent.note

	@pytest.mark.asyncio
	async def test_tool_error_marker(self, fast_options, knowledge_config):
		runner = make_runner(fast_options, FakeDriver(failing_tools=("search_documents",)))

		result = await runner.test_server(knowledge_config)
		search = result.capabilities["tools"].tests[0]

		assert search.status == "failed"
		assert "search_documents" in search.error
		assert result.status == "failed"

	@pytest.mark.asyncio
	async def test_tool_exception_does_not_stop_phase(self, fast_options, knowledge_config):
		driver = FakeDriver(raising={"search_documents": RuntimeError("Run Tool button detached")})
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		tools = result.capabilities["tools"].tests

		assert tools[0].status == "failed"
		assert tools[0].error == "Run Tool button detached"
		assert [t.status for t in tools[1:]] == ["success", "success"]

	@pytest.mark.asyncio
	async def test_prompt_args_are_passed(self, fast_options, knowledge_config):
		driver = FakeDriver()
		runner = make_runner(fast_options, driver)

		await runner.test_server(knowledge_config)

		assert ("prompt", "research_assistant", {"topic": "MCP"}) in driver.calls


class TestElicitationAndProgress:

	@pytest.mark.asyncio
	async def test_elicitation_form_is_answered(self, fast_options, knowledge_config):
		driver = FakeDriver()
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		tool = result.capabilities["tools"].tests[2]

		assert tool.requires_elicitation is True
		assert tool.form_handled is True
		assert result.elicitation.supported is True
		assert result.elicitation.tests[0].tool_name == "test_elicitation"
		assert ("elicitation", {"name": "Test User", "favoriteColor": "blue", "isTestSuccessful": True}) in driver.calls

	@pytest.mark.asyncio
	async def test_elicitation_failure(self, fast_options, knowledge_config):
		driver = FakeDriver(elicitation_error=RuntimeError("form never appeared"))
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		tool = result.capabilities["tools"].tests[2]

		assert tool.status == "failed"
		assert tool.error == "form never appeared"
		assert result.elicitation.supported is False
		assert result.elicitation.tests[0].status == "failed"

	@pytest.mark.asyncio
	async def test_elicitation_tool_that_cannot_run(self, fast_options, knowledge_config):
		driver = FakeDriver(missing=("test_elicitation",))
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		tool = result.capabilities["tools"].tests[2]

		assert tool.status == "failed"
		assert "could not be run" in tool.error
		assert not tool.form_handled
		assert result.elicitation.supported is False
		assert result.elicitation.tests[0].status == "failed"
		assert not result.elicitation.tests[0].form_handled
		assert not any(call[0] == "elicitation" for call in driver.calls)

	@pytest.mark.asyncio
	async def test_progress_detected_from_scraped_text(self, fast_options, knowledge_config):
		driver = FakeDriver(texts={"bulk_knowledge_processing": "method: notifications/progress"})
		runner = make_runner(fast_options, driver)

		result = await runner.test_server(knowledge_config)
		progress = result.progress_notifications

		assert progress.supported is True
		assert [t.tool_name for t in progress.tests] == ["bulk_knowledge_processing"]

	@pytest.mark.asyncio
	async def test_no_progress(self, fast_options, tools_only_config):
		runner = make_runner(fast_options)

		result = await runner.test_server(tools_only_config)

		assert result.progress_notifications.supported is False
		assert result.progress_notifications.tests == []


class TestPing:

	@pytest.mark.asyncio
	async def test_ping_failure_fails_server(self, fast_options, tools_only_config):
		runner = make_runner(fast_options, FakeDriver(ping_outcome=RuntimeError("no ping response")))

		result = await runner.test_server(tools_only_config)

		assert result.ping.status == "failed"
		assert result.ping.error == "no ping response"
		assert result.status == "failed"

	@pytest.mark.asyncio
	async def test_unclear_ping_is_success_with_note(self, fast_options, tools_only_config):
		runner = make_runner(fast_options, FakeDriver(ping_outcome="response"))

		result = await runner.test_server(tools_only_config)

		assert result.ping.status == "success"
		assert result.ping.note
		assert result.status == "completed"


# ============================================================
# AGGREGATION
# ============================================================


def _server(name, statuses, ping=None, errors=()):
	server = ServerTestResult(serverName=name, serverPath=f"{name}/dist/index.js")
	for index, status in enumerate(statuses):
		server.capabilities["tools"].record(
			TestCaseResult(name=f"tool_{index}", status=status, error=None if status == "success" else "boom")
		)
	if ping is not None:
		server.ping = PingResult(status=ping)
	for error in errors:
		server.add_error("general", error)
	server.status = "failed" if server.has_failures() else "completed"
	return server


class TestSummary:

	def test_empty_run(self, fast_options):
		summary = make_runner(fast_options).generate_summary()

		assert summary.total_tests == 0
		assert summary.success_rate == 0

	def test_counts(self, fast_options):
		runner = make_runner(fast_options)
		runner.test_results = [
			_server("dev-tools", ["success", "success"], ping="success"),
			_server("analytics", ["success", "failed"], ping="failed"),
		]

		summary = runner.generate_summary()

		assert summary.total_servers == 2
		assert summary.successful_servers == 1
		assert summary.failed_servers == 1
		assert summary.total_tests == 6
		assert summary.passed_tests == 4
		assert summary.failed_tests == 2
		assert summary.success_rate == 67

	def test_rate_rounds_half_up(self, fast_options):
		runner = make_runner(fast_options)
		runner.test_results = [_server("cloud-ops", ["success"] + ["failed"] * 7)]

		assert runner.generate_summary().success_rate == 13

	def test_completed_with_errors_is_not_successful(self, fast_options):
		runner = make_runner(fast_options)
		server = _server("knowledge", ["success"])
		server.add_error("general", "late failure")
		server.status = "completed"
		runner.test_results = [server]

		assert runner.generate_summary().successful_servers == 0

	def test_summary_serializes_camel_case(self, fast_options):
		data = make_runner(fast_options).generate_summary().to_dict()

		assert set(data) == {
			"totalServers", "successfulServers", "failedServers",
			"totalTests", "passedTests", "failedTests", "successRate",
		}


class TestReport:

	@pytest.mark.asyncio
	async def test_report_payload(self, fast_options):
		runner = make_runner(fast_options)
		runner.test_results = [_server("dev-tools", ["success"], ping="success")]
		validation = runner.validate_results()

		report_path = await runner.generate_report(validation)
		report = load_report(report_path)

		assert report_path.parent == fast_options.output_dir
		assert report["summary"]["totalTests"] == 2
		assert report["testResults"][0]["serverName"] == "dev-tools"
		assert report["environment"] == {"headless": True, "timeout": 30000, "retries": 0}
		assert report["validation"]["isValid"] is True
		assert "timestamp" in report


# ============================================================
# INSPECTOR PROCESS
# ============================================================


class TestInspectorProcess:

	@pytest.mark.asyncio
	async def test_url_is_read_from_stdout(self, fast_options, spawn):
		process = FakeProcess([
			"Starting MCP inspector...\n",
			"Proxy server listening on port 6277\n",
			f"MCP Inspector is up and running at {INSPECTOR_URL} \n",
		])
		spawned = spawn(process)
		runner = InspectorTestRunner(fast_options, driver=FakeDriver())

		url = await runner.start_inspector()
		await runner.cleanup()

		assert url == INSPECTOR_URL
		assert runner.inspector_url == INSPECTOR_URL
		assert spawned["command"] == ["npx", "@modelcontextprotocol/inspector"]
		assert process.stdin.written == b"\n"
		assert process.terminated is True

	@pytest.mark.asyncio
	async def test_url_after_partial_write(self, fast_options, spawn):
		process = FakeProcess(["MCP Inspector is up at ", f"{INSPECTOR_URL}\n"])
		spawn(process)
		runner = InspectorTestRunner(fast_options, driver=FakeDriver())

		assert await runner.start_inspector() == INSPECTOR_URL
		await runner.cleanup()

	@pytest.mark.asyncio
	async def test_timeout(self, fast_options, spawn):
		options = fast_options.model_copy(update={"inspector_start_timeout": 0.05})
		process = FakeProcess(["Starting MCP inspector...\n"])
		spawn(process)
		runner = InspectorTestRunner(options, driver=FakeDriver())

		with pytest.raises(InspectorTimeoutError, match="Timeout waiting for MCP Inspector"):
			await runner.start_inspector()
		await runner.cleanup()

		assert process.terminated is True

	@pytest.mark.asyncio
	async def test_early_exit(self, fast_options, spawn):
		spawn(FakeProcess(["npm ERR! could not determine executable to run\n"], exit_code=1))
		runner = InspectorTestRunner(fast_options, driver=FakeDriver())

		with pytest.raises(InspectorStartError, match="exited with code 1") as exc_info:
			await runner.start_inspector()

		assert not isinstance(exc_info.value, InspectorTimeoutError)

	@pytest.mark.asyncio
	async def test_spawn_failure(self, fast_options, spawn):
		spawn(error=FileNotFoundError("npx"))
		runner = InspectorTestRunner(fast_options, driver=FakeDriver())

		with pytest.raises(InspectorStartError, match="Failed to start MCP Inspector"):
			await runner.start_inspector()


class TestRun:

	@pytest.mark.asyncio
	async def test_end_to_end(self, fast_options, tools_only_config, spawn):
		process = FakeProcess([f"{INSPECTOR_URL}\n"])
		spawn(process)
		driver = FakeDriver()
		runner = InspectorTestRunner(fast_options, driver=driver)

		outcome = await runner.run({"dev-tools": tools_only_config})

		assert outcome["summary"].passed_tests == 3
		assert outcome["validation"]["isValid"] is True
		assert outcome["reportPath"].exists()
		assert driver.calls[0] == ("initialize",)
		assert driver.cleaned_up is True
		assert process.terminated is True

	@pytest.mark.asyncio
	async def test_cleanup_runs_when_start_fails(self, fast_options, tools_only_config, spawn):
		spawn(error=FileNotFoundError("npx"))
		driver = FakeDriver()
		runner = InspectorTestRunner(fast_options, driver=driver)

		with pytest.raises(InspectorStartError):
			await runner.run({"dev-tools": tools_only_config})

		assert driver.cleaned_up is True
		assert not any(call[0] == "connect" for call in driver.calls)


def test_resource_content_heuristic():
	assert has_resource_content({"text": "Total Documents: 3"}) is True
	assert has_resource_content({"text": "knowledge_base_stats"}) is False
	assert has_resource_content(None) is False
