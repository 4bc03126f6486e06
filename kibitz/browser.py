"""
Browser management for MCP Inspector testing.

Handles browser automation, page management, screenshot capture and
lightweight DOM scraping. All Inspector markup comes from ``selectors``.
"""
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Locator,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from . import selectors
from .errors import BrowserNotInitializedError, ServerConnectionError
from .logging_config import get_logger
from .retry_logic import await_condition
from .schema_validation import RunnerOptions
from .ui_driver import UiDriver

logger = get_logger("browser")

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--allow-running-insecure-content",
]
VIEWPORT = {"width": 1920, "height": 1080}

# Runs in the page; JSON-looking blocks that fail to parse are counted, not kept
EXTRACT_DATA_SCRIPT = """
(jsonSelector) => {
    const data = {
        text: document.body ? document.body.innerText : '',
        title: document.title,
        url: window.location.href,
        timestamp: new Date().toISOString(),
        skippedBlocks: 0
    };
    const jsonData = [];
    document.querySelectorAll(jsonSelector).forEach(el => {
        const text = (el.textContent || '').trim();
        if (!(text.startsWith('{') || text.startsWith('['))) {
            return;
        }
        try {
            jsonData.push(JSON.parse(text));
        } catch (e) {
            data.skippedBlocks += 1;
        }
    });
    if (jsonData.length > 0) {
        data.extractedJson = jsonData;
    }
    return data;
}
"""


def screenshot_filename(counter: int, name: str, when: Optional[datetime] = None) -> str:
    """``<NNN>-<ISO8601 with : and . replaced>-<name>.png``"""
    when = when or datetime.now(timezone.utc)
    stamp = when.strftime("%Y-%m-%dT%H-%M-%S-") + f"{when.microsecond // 1000:03d}Z"
    safe_name = "".join(c if c.isalnum() or c in "-_" else "-" for c in name)
    return f"{counter:03d}-{stamp}-{safe_name}.png"


class BrowserManager(UiDriver):
    """Drives one Chromium session against the Inspector"""

    retryable_errors = (PlaywrightError,)

    def __init__(self, options: Optional[RunnerOptions] = None):
        self.options = options or RunnerOptions.from_env()
        self.screenshot_dir = Path(self.options.screenshot_dir)

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        # Numbering restarts per run (reset_screenshot_counter), not per process
        self.screenshot_counter = 0

    # ============================================================
    # LIFECYCLE
    # ============================================================

    async def initialize(self) -> bool:
        """Launch the browser, open the single page, install listeners"""
        logger.info(f"Initializing browser (headless: {self.options.headless})")

        self.screenshot_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.options.headless,
                args=LAUNCH_ARGS,
            )

            context_args: Dict[str, Any] = {"viewport": VIEWPORT}
            if self.options.record_video:
                context_args["record_video_dir"] = str(self.screenshot_dir / "videos")
            self.context = await self.browser.new_context(**context_args)

            self.page = await self.context.new_page()
            self.page.set_default_timeout(self.options.timeout)
            self.page.on("console", self._on_console)
            self.page.on("pageerror", self._on_page_error)
        except Exception as e:
            logger.error(f"Failed to initialize browser: {e}")
            raise

        logger.info("Browser initialized successfully")
        return True

    def _on_console(self, message) -> None:
        if message.type == "error":
            logger.error(f"Browser console error: {message.text}")

    def _on_page_error(self, error) -> None:
        logger.error(f"Page error: {getattr(error, 'message', error)}")

    def reset_screenshot_counter(self) -> None:
        self.screenshot_counter = 0

    async def cleanup(self) -> None:
        """Close page, context, browser in order; each step guarded on its own"""
        logger.info("Cleaning up browser resources")

        for label, resource in (("page", self.page), ("context", self.context), ("browser", self.browser)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.error(f"Error closing {label}: {e}")

        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception as e:
                logger.error(f"Error stopping playwright: {e}")

        self.page = self.context = self.browser = self.playwright = None
        logger.info("Browser cleanup completed")

    # ============================================================
    # HELPERS
    # ============================================================

    def _require_page(self) -> Page:
        if self.page is None:
            raise BrowserNotInitializedError()
        return self.page

    async def _pause(self, seconds: float) -> None:
        """Fixed settle delay for UI actions with no observable completion"""
        if seconds > 0:
            await self._require_page().wait_for_timeout(seconds * 1000)

    async def _count_any(self, candidates: Sequence[str]) -> int:
        page = self._require_page()
        total = 0
        for candidate in candidates:
            total += await page.locator(candidate).count()
        return total

    def _any_locator(self, candidates: Sequence[str]) -> Locator:
        page = self._require_page()
        combined = page.locator(candidates[0])
        for candidate in candidates[1:]:
            combined = combined.or_(page.locator(candidate))
        return combined.first

    async def _find_item(self, *candidates: str) -> Optional[Locator]:
        """First candidate selector that matches something on the page"""
        page = self._require_page()
        for candidate in candidates:
            locator = page.locator(candidate).first
            if await locator.count() > 0:
                return locator
        return None

    async def resolve_field(self, field_name: str, aliases: Optional[Dict[str, List[str]]] = None) -> Optional[Locator]:
        """Locate the form field for an argument using the ordered matcher list"""
        return await self._find_item(*selectors.field_selectors(field_name, aliases))

    async def _fill_arguments(
        self,
        parameters: Dict[str, Any],
        aliases: Optional[Dict[str, List[str]]] = None,
        select_by_label: bool = False,
    ) -> List[str]:
        """Fill each argument into its best-matching field; returns names left unfilled"""
        missing = []
        for param_name, param_value in parameters.items():
            field = await self.resolve_field(param_name, aliases)
            if field is None:
                logger.warning(f"  Could not find field for {param_name}")
                missing.append(param_name)
                continue

            tag_name = await field.evaluate("el => el.tagName.toLowerCase()")
            if tag_name == "select":
                if select_by_label:
                    await field.select_option(label=str(param_value))
                else:
                    await field.select_option(str(param_value))
            else:
                await field.fill(str(param_value))
            logger.debug(f"  Filled {param_name} = {param_value}")
        return missing

    async def _ensure_listed(self, tab_name: str, item_name: str) -> None:
        """Click the tab's List button unless the item is already on screen"""
        if await self._count_any(selectors.items_listed([item_name])) > 0:
            logger.debug(f"  {tab_name} already listed")
            return

        logger.debug(f'  Clicking list button for {tab_name}')
        button = await self._require_page().wait_for_selector(selectors.LIST_BUTTONS[tab_name], timeout=5000)
        await button.click()
        await self._pause(self.options.list_delay)
        await self.capture_screenshot(f"{tab_name.lower()}-listed")

    # ============================================================
    # NAVIGATION & CONNECTION
    # ============================================================

    async def navigate_to_inspector(self, inspector_url: str) -> bool:
        page = self._require_page()
        logger.info(f"Navigating to MCP Inspector: {inspector_url}")

        try:
            await page.goto(inspector_url, wait_until="networkidle")
            await page.wait_for_selector(selectors.INSPECTOR_LANDMARK, timeout=10000)
        except Exception as e:
            await self.capture_screenshot("inspector-load-failed")
            logger.error(f"Failed to load MCP Inspector: {e}")
            raise

        await self.capture_screenshot("inspector-loaded")
        logger.info("MCP Inspector loaded successfully")
        return True

    async def is_connected(self) -> bool:
        """UI evidence of a live session: a Disconnect control or capability tabs"""
        if await self._require_page().locator(selectors.DISCONNECT_BUTTON).count() > 0:
            return True
        return await self._count_any(selectors.CAPABILITY_TAB_BUTTONS) > 0

    async def connect_to_server(self, server_path: str) -> bool:
        """
        Fill the stdio form with ``node <path>``, click Connect, then poll the
        DOM for evidence of a session.

        Raises:
            ServerConnectionError: the polling budget ran out
            playwright TimeoutError: a form control never appeared
        """
        page = self._require_page()
        logger.info(f"Connecting to server: {server_path}")

        try:
            command_input = await page.wait_for_selector(selectors.COMMAND_INPUT, timeout=5000)
            await command_input.select_text()
            await command_input.fill(selectors.SERVER_COMMAND)

            args_input = await page.wait_for_selector(selectors.ARGUMENTS_INPUT, timeout=5000)
            await args_input.fill(server_path)
            await self.capture_screenshot("server-config-filled")

            connect_button = await page.wait_for_selector(selectors.CONNECT_BUTTON, timeout=5000)
            await connect_button.click()
            await self._pause(self.options.connect_grace)

            interval = self.options.connect_interval
            await await_condition(
                self.is_connected,
                interval=interval,
                max_attempts=self.options.connect_max_attempts,
                description=f"connection to {server_path}",
                sleep=self._pause,
                error_factory=lambda attempts: ServerConnectionError(server_path, attempts, interval),
            )
        except Exception as e:
            await self.capture_screenshot("server-connection-failed")
            logger.error(f"Failed to connect to server: {e}")
            raise

        await self.capture_screenshot("server-connected")
        logger.info("Successfully connected to server")
        return True

    async def disconnect(self) -> bool:
        """Click Disconnect if the UI offers it; returns whether it was clicked"""
        page = self._require_page()
        button = page.locator(selectors.DISCONNECT_BUTTON).first
        if await button.count() == 0:
            return False
        await button.click()
        await self._pause(self.options.select_delay)
        logger.info("Disconnected from server")
        return True

    async def navigate_to_tab(self, tab_name: str) -> bool:
        slug = tab_name.lower()
        logger.debug(f"Clicking {tab_name} button")
        await self.capture_screenshot(f"section-{slug}-before")

        try:
            button = await self._require_page().wait_for_selector(selectors.tab_button(tab_name), timeout=5000)
            await button.click()
            # Tab switches have no loaded signal
            await self._pause(self.options.settle_delay)
        except Exception as e:
            await self.capture_screenshot(f"section-{slug}-failed")
            logger.error(f"Failed to click {tab_name} button: {e}")
            raise

        await self.capture_screenshot(f"section-{slug}")
        return True

    # ============================================================
    # CAPABILITIES
    # ============================================================

    async def click_resource(self, resource_name: str) -> bool:
        """Select a resource from the list; False when it is not listed"""
        logger.info(f"Testing resource: {resource_name}")

        try:
            await self.navigate_to_tab(selectors.TAB_RESOURCES)
            await self._ensure_listed(selectors.TAB_RESOURCES, resource_name)

            element = await self._find_item(
                selectors.item_with_icon(resource_name),
                selectors.item_contains(resource_name),
            )
            if element is None:
                logger.warning(f'Resource "{resource_name}" not found in list')
                return False

            await element.click()
            await self._pause(self.options.list_delay)
            await self.capture_screenshot(f"resource-{resource_name}-clicked")

            if await self._count_any(selectors.RESOURCE_CONTENT_MARKERS) > 0:
                logger.info(f"Resource content detected for: {resource_name}")
            else:
                # Clicking worked even if nothing rendered; the runner notes it
                logger.warning(f"Resource {resource_name} clicked but no content displayed")
        except Exception as e:
            await self.capture_screenshot(f"resource-{resource_name}-failed")
            logger.error(f"Failed to test resource {resource_name}: {e}")
            raise

        return True

    async def execute_tool(self, tool_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
        """
        Select a tool, fill its arguments and run it.

        Returns False when the tool is missing, has no Run button, or shows
        an error marker. When neither an error nor a success marker is
        visible the run counts as a success: the Inspector does not always
        render an explicit result state.
        """
        parameters = parameters or {}
        logger.info(f"Testing tool: {tool_name}")

        try:
            await self.navigate_to_tab(selectors.TAB_TOOLS)
            await self._ensure_listed(selectors.TAB_TOOLS, tool_name)

            element = await self._find_item(selectors.item_exact(tool_name), selectors.item_contains(tool_name))
            if element is None:
                logger.warning(f'Tool "{tool_name}" not found in list')
                return False

            await element.click()
            await self._pause(self.options.select_delay)
            await self.capture_screenshot(f"tool-{tool_name}-selected")

            if parameters:
                await self._fill_arguments(parameters)
                await self.capture_screenshot(f"tool-{tool_name}-parameters-filled")

            run_button = self._require_page().locator(selectors.RUN_TOOL_BUTTON).first
            if await run_button.count() == 0:
                logger.warning('No "Run Tool" button found')
                return False

            await run_button.click()
            await self._pause(self.options.run_delay)

            error_visible = await self._count_any(selectors.TOOL_ERROR_MARKERS) > 0
            success_visible = await self._count_any(selectors.TOOL_SUCCESS_MARKERS) > 0
            await self.capture_screenshot(f"tool-{tool_name}-executed")
        except Exception as e:
            await self.capture_screenshot(f"tool-{tool_name}-failed")
            logger.error(f"Failed to test tool {tool_name}: {e}")
            raise

        if error_visible:
            logger.warning(f"Tool {tool_name} execution failed (error visible)")
            return False
        if success_visible:
            logger.info(f"Successfully executed tool: {tool_name}")
        else:
            logger.info(f"Tool {tool_name} executed (result status unclear)")
        return True

    async def execute_prompt(self, prompt_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
        """Select a prompt, fill its arguments and click Get Prompt"""
        parameters = parameters or {}
        logger.info(f"Testing prompt: {prompt_name}")

        try:
            await self.navigate_to_tab(selectors.TAB_PROMPTS)
            await self._ensure_listed(selectors.TAB_PROMPTS, prompt_name)

            element = await self._find_item(selectors.item_exact(prompt_name), selectors.item_contains(prompt_name))
            if element is None:
                logger.warning(f'Prompt "{prompt_name}" not found in list')
                return False

            await element.click()
            await self._pause(self.options.select_delay)
            await self.capture_screenshot(f"prompt-{prompt_name}-selected")

            if parameters:
                await self._fill_arguments(parameters, aliases=selectors.PROMPT_FIELD_ALIASES, select_by_label=True)
                await self.capture_screenshot(f"prompt-{prompt_name}-parameters-filled")

            get_button = self._require_page().locator(selectors.GET_PROMPT_BUTTON).first
            if await get_button.count() == 0:
                # The form may simply not render a button for argument-less prompts
                logger.warning('No "Get Prompt" button found - prompt form may not be displayed')
                await self.capture_screenshot(f"prompt-{prompt_name}-no-button")
                return True

            await get_button.click()
            await self._pause(self.options.list_delay)

            result_visible = await self._count_any(selectors.PROMPT_RESULT_MARKERS) > 0
            await self.capture_screenshot(f"prompt-{prompt_name}-executed")
        except Exception as e:
            await self.capture_screenshot(f"prompt-{prompt_name}-failed")
            logger.error(f"Failed to test prompt {prompt_name}: {e}")
            raise

        if result_visible:
            logger.info(f"Successfully generated prompt: {prompt_name}")
        else:
            logger.info(f"Prompt {prompt_name} executed (result status unclear)")
        return True

    async def handle_elicitation(self, form_data: Optional[Dict[str, Any]] = None) -> bool:
        """Fill and submit the form a server raised mid-operation"""
        form_data = form_data or {}
        page = self._require_page()
        logger.info("Handling elicitation form")

        try:
            await self._any_locator(selectors.ELICITATION_FORM).wait_for(timeout=10000)
            await self.capture_screenshot("elicitation-form-appeared")

            for field_name, value in form_data.items():
                field_selector = ", ".join(
                    f'{tag}[name="{field_name}"]' for tag in ("input", "select", "textarea")
                )
                try:
                    field = await page.wait_for_selector(field_selector, timeout=2000)
                    tag_name = await field.evaluate("el => el.tagName")
                    field_type = await field.evaluate("el => el.type")
                    if tag_name == "SELECT":
                        await field.select_option(label=str(value))
                    elif field_type == "checkbox":
                        if value:
                            await field.check()
                        else:
                            await field.uncheck()
                    else:
                        await field.fill(str(value))
                except PlaywrightError as field_error:
                    logger.warning(f"Could not fill field {field_name}: {field_error}")

            await self.capture_screenshot("elicitation-form-filled")

            submit = self._any_locator(selectors.ELICITATION_SUBMIT)
            await submit.wait_for(timeout=5000)
            await submit.click()
        except Exception as e:
            await self.capture_screenshot("elicitation-form-failed")
            logger.error(f"Failed to handle elicitation form: {e}")
            raise

        await self.capture_screenshot("elicitation-form-submitted")
        logger.info("Successfully handled elicitation form")
        return True

    async def ping(self) -> Dict[str, Any]:
        """
        Click the ping control and wait for a success marker.

        Ping UIs are inconsistent about wording, so any visible response
        content is accepted when no explicit success text shows up.
        """
        page = self._require_page()
        await self.navigate_to_tab(selectors.TAB_PING)

        button = await page.wait_for_selector(selectors.PING_BUTTON, timeout=5000)
        await button.click()

        try:
            await self._any_locator(selectors.PING_SUCCESS_MARKERS).wait_for(timeout=self.options.ping_timeout)
            matched = "success"
        except PlaywrightTimeoutError:
            if await self._count_any(selectors.PING_ANY_RESPONSE_MARKERS) == 0:
                await self.capture_screenshot("ping-failed")
                raise
            logger.info("Ping got a response, treating as success")
            matched = "response"

        await self.capture_screenshot("ping-completed")
        return {"matched": matched}

    # ============================================================
    # EVIDENCE
    # ============================================================

    async def capture_screenshot(self, name: str) -> Optional[str]:
        """Best-effort full-page screenshot; never raises"""
        if self.page is None:
            return None

        try:
            self.screenshot_counter += 1
            filepath = self.screenshot_dir / screenshot_filename(self.screenshot_counter, name)
            await self.page.screenshot(path=str(filepath), full_page=True)
            logger.debug(f"Screenshot saved: {filepath.name}")
            return str(filepath)
        except Exception as e:
            logger.error(f"Failed to capture screenshot: {e}")
            return None

    async def get_page_content(self) -> Optional[str]:
        if self.page is None:
            return None
        try:
            return await self.page.content()
        except Exception as e:
            logger.error(f"Failed to get page content: {e}")
            return None

    async def extract_current_data(self) -> Optional[Dict[str, Any]]:
        """
        Scrape visible text plus any JSON embedded in pre/code blocks.

        Lossy on purpose: this is forensic evidence, not a protocol
        response. Unparsable blocks are counted in ``skippedBlocks``.
        """
        if self.page is None:
            return None

        try:
            data = await self.page.evaluate(EXTRACT_DATA_SCRIPT, selectors.JSON_BLOCK_SELECTOR)
        except Exception as e:
            logger.error(f"Failed to extract data: {e}")
            return None

        if data.get("skippedBlocks"):
            logger.debug(f"Skipped {data['skippedBlocks']} unparsable JSON block(s)")
        return data
