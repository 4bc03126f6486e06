"""
Pytest configuration and shared fakes.

Nothing here launches a browser or the Inspector: ``FakePage`` stands in
for a Playwright page and ``FakeDriver`` for the whole UI driver.
"""

from typing import Any, Dict, List, Optional

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from kibitz.schema_validation import RunnerOptions, ServerTestConfig
from kibitz.ui_driver import UiDriver


# ============================================================
# FAKE PLAYWRIGHT PAGE
# ============================================================


class FakeLocator:
	"""Locator/element handle hybrid keyed on its selector string."""

	def __init__(self, page: "FakePage", selector: str, alternatives: Optional[List[str]] = None):
		self.page = page
		self.selector = selector
		self.alternatives = alternatives or [selector]

	@property
	def first(self) -> "FakeLocator":
		return self

	def or_(self, other: "FakeLocator") -> "FakeLocator":
		return FakeLocator(self.page, self.selector, self.alternatives + other.alternatives)

	async def count(self) -> int:
		return sum(self.page.count_of(selector) for selector in self.alternatives)

	async def wait_for(self, timeout: Optional[float] = None) -> None:
		if await self.count() == 0:
			raise PlaywrightTimeoutError(f"Timeout {timeout}ms waiting for {self.selector}")

	async def click(self) -> None:
		self.page.clicks.append(self.selector)

	async def fill(self, value: str) -> None:
		self.page.filled[self.selector] = value

	async def select_text(self) -> None:
		return None

	async def select_option(self, value: Optional[str] = None, label: Optional[str] = None) -> None:
		self.page.selected[self.selector] = {"value": value, "label": label}

	async def check(self) -> None:
		self.page.filled[self.selector] = True

	async def uncheck(self) -> None:
		self.page.filled[self.selector] = False

	async def evaluate(self, script: str) -> str:
		if "el.type" in script:
			return self.page.types.get(self.selector, "text")
		tag = self.page.tags.get(self.selector, "input")
		return tag.lower() if "toLowerCase" in script else tag.upper()


class FakePage:
	"""
	Minimal async page: ``counts`` maps selectors to how many elements match.

	``reveal_after`` makes a selector start matching once the page has been
	asked to wait that many times, which is how connection polling is faked.
	"""

	def __init__(self, counts: Optional[Dict[str, int]] = None):
		self.counts: Dict[str, int] = dict(counts or {})
		self.tags: Dict[str, str] = {}
		self.types: Dict[str, str] = {}
		self.pending: Dict[str, int] = {}
		self.clicks: List[str] = []
		self.filled: Dict[str, Any] = {}
		self.selected: Dict[str, Any] = {}
		self.waits: List[float] = []
		self.screenshots: List[str] = []
		self.closed = False
		self.evaluate_result: Any = None
		self.fail_screenshots = False

	def reveal_after(self, selector: str, waits: int) -> None:
		self.pending[selector] = waits

	def count_of(self, selector: str) -> int:
		threshold = self.pending.get(selector)
		if threshold is not None and len(self.waits) >= threshold:
			return 1
		return self.counts.get(selector, 0)

	def locator(self, selector: str) -> FakeLocator:
		return FakeLocator(self, selector)

	async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> FakeLocator:
		if self.count_of(selector) == 0:
			raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")
		return FakeLocator(self, selector)

	async def wait_for_timeout(self, ms: float) -> None:
		self.waits.append(ms)

	async def screenshot(self, path: str, full_page: bool = False) -> None:
		if self.fail_screenshots:
			raise RuntimeError("screenshot failed")
		self.screenshots.append(path)

	async def evaluate(self, script: str, arg: Any = None) -> Any:
		return self.evaluate_result

	async def content(self) -> str:
		return "<html></html>"

	async def close(self) -> None:
		self.closed = True


# ============================================================
# FAKE UI DRIVER
# ============================================================


class FakeDriver(UiDriver):
	"""Scriptable in-memory driver that records every intent it receives."""

	def __init__(
		self,
		connect_error: Optional[Exception] = None,
		missing: tuple = (),
		failing_tools: tuple = (),
		raising: Optional[Dict[str, Exception]] = None,
		failing_tabs: tuple = (),
		texts: Optional[Dict[str, str]] = None,
		default_text: str = "",
		ping_outcome: Any = "success",
		elicitation_error: Optional[Exception] = None,
		navigate_error: Optional[Exception] = None,
	):
		self.connect_error = connect_error
		self.missing = set(missing)
		self.failing_tools = set(failing_tools)
		self.raising = raising or {}
		self.failing_tabs = set(failing_tabs)
		self.texts = texts or {}
		self.default_text = default_text
		self.ping_outcome = ping_outcome
		self.elicitation_error = elicitation_error
		self.navigate_error = navigate_error

		self.calls: List[tuple] = []
		self.last_item: Optional[str] = None
		self.screenshot_count = 0
		self.cleaned_up = False

	def _record(self, *call) -> None:
		self.calls.append(call)

	def _touch(self, name: str) -> None:
		self.last_item = name
		if name in self.raising:
			raise self.raising[name]

	async def initialize(self) -> bool:
		self._record("initialize")
		return True

	async def navigate_to_inspector(self, inspector_url: str) -> bool:
		self._record("navigate", inspector_url)
		if self.navigate_error is not None:
			raise self.navigate_error
		return True

	async def connect_to_server(self, server_path: str) -> bool:
		self._record("connect", server_path)
		if self.connect_error is not None:
			raise self.connect_error
		return True

	async def disconnect(self) -> bool:
		self._record("disconnect")
		return True

	async def navigate_to_tab(self, tab_name: str) -> bool:
		self._record("tab", tab_name)
		if tab_name in self.failing_tabs:
			raise RuntimeError(f"{tab_name} tab not found")
		return True

	async def click_resource(self, resource_name: str) -> bool:
		self._record("resource", resource_name)
		self._touch(resource_name)
		return resource_name not in self.missing

	async def execute_tool(self, tool_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
		self._record("tool", tool_name, parameters)
		self._touch(tool_name)
		return tool_name not in self.missing and tool_name not in self.failing_tools

	async def execute_prompt(self, prompt_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
		self._record("prompt", prompt_name, parameters)
		self._touch(prompt_name)
		return prompt_name not in self.missing

	async def handle_elicitation(self, form_data: Optional[Dict[str, Any]] = None) -> bool:
		self._record("elicitation", form_data)
		if self.elicitation_error is not None:
			raise self.elicitation_error
		return True

	async def ping(self) -> Dict[str, Any]:
		self._record("ping")
		if isinstance(self.ping_outcome, Exception):
			raise self.ping_outcome
		return {"matched": self.ping_outcome}

	async def capture_screenshot(self, name: str) -> Optional[str]:
		self.screenshot_count += 1
		return f"screenshots/{self.screenshot_count:03d}-{name}.png"

	async def extract_current_data(self) -> Optional[Dict[str, Any]]:
		text = self.texts.get(self.last_item, self.default_text)
		return {"text": text, "title": "MCP Inspector", "skippedBlocks": 0}

	def reset_screenshot_counter(self) -> None:
		self.screenshot_count = 0

	async def cleanup(self) -> None:
		self._record("cleanup")
		self.cleaned_up = True


# ============================================================
# FIXTURES
# ============================================================


@pytest.fixture
def fast_options(tmp_path):
	"""Runner options with every settle delay zeroed."""
	return RunnerOptions(
		headless=True,
		retries=0,
		screenshot_dir=tmp_path / "screenshots",
		output_dir=tmp_path / "reports",
		inspector_start_timeout=0.5,
		connect_interval=1.0,
		connect_max_attempts=10,
		connect_grace=0,
		settle_delay=0,
		list_delay=0,
		select_delay=0,
		run_delay=0,
	)


@pytest.fixture
def knowledge_config():
	"""A server exercising every capability, including an elicitation tool."""
	return ServerTestConfig.model_validate({
		"name": "Knowledge Server",
		"path": "packages/servers/knowledge/dist/index.js",
		"capabilities": ["tools", "resources", "prompts"],
		"testCases": {
			"tools": [
				{"name": "search_documents", "args": {"query": "MCP"}},
				{"name": "bulk_knowledge_processing", "hasProgressNotifications": True},
				{
					"name": "test_elicitation",
					"expectedResponse": "elicitation",
					"elicitationForm": {"name": "Test User", "favoriteColor": "blue", "isTestSuccessful": True},
				},
			],
			"resources": ["knowledge_base_stats", "recent_documents"],
			"prompts": [{"name": "research_assistant", "args": {"topic": "MCP"}}],
		},
	})


@pytest.fixture
def tools_only_config():
	return ServerTestConfig.model_validate({
		"name": "Dev Tools Server",
		"path": "packages/servers/dev-tools/dist/index.js",
		"capabilities": ["tools"],
		"testCases": {"tools": [{"name": "format_code"}, {"name": "list_files"}]},
	})
