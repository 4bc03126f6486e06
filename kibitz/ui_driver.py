"""
Narrow interface between the test runner and whatever drives the Inspector UI.

The runner only talks to a ``UiDriver``; ``BrowserManager`` is the
Playwright implementation. Tests substitute an in-memory driver.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Type


class UiDriver(ABC):
    """High-level test intents against the Inspector"""

    # Exceptions worth retrying a whole navigation for
    retryable_errors: Tuple[Type[Exception], ...] = ()

    @abstractmethod
    async def initialize(self) -> bool:
        ...

    @abstractmethod
    async def navigate_to_inspector(self, inspector_url: str) -> bool:
        ...

    @abstractmethod
    async def connect_to_server(self, server_path: str) -> bool:
        ...

    @abstractmethod
    async def disconnect(self) -> bool:
        ...

    @abstractmethod
    async def navigate_to_tab(self, tab_name: str) -> bool:
        ...

    @abstractmethod
    async def click_resource(self, resource_name: str) -> bool:
        ...

    @abstractmethod
    async def execute_tool(self, tool_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
        ...

    @abstractmethod
    async def execute_prompt(self, prompt_name: str, parameters: Optional[Dict[str, Any]] = None) -> bool:
        ...

    @abstractmethod
    async def handle_elicitation(self, form_data: Optional[Dict[str, Any]] = None) -> bool:
        ...

    @abstractmethod
    async def ping(self) -> Dict[str, Any]:
        """Click ping and report ``{"matched": "success"|"response"}``; raise if nothing shows"""

    @abstractmethod
    async def capture_screenshot(self, name: str) -> Optional[str]:
        ...

    @abstractmethod
    async def extract_current_data(self) -> Optional[Dict[str, Any]]:
        ...

    def reset_screenshot_counter(self) -> None:
        """Start screenshot numbering over for a new run"""

    @abstractmethod
    async def cleanup(self) -> None:
        ...
