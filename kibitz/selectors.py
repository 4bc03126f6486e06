"""
DOM selector contract for the MCP Inspector web UI.

Every piece of Inspector markup or visible text the harness depends on
lives here. When a new Inspector release changes its UI, this module is
the one to update.
"""
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

# Matches the line the Inspector prints once it is serving, e.g.
# "http://localhost:6274/?MCP_PROXY_AUTH_TOKEN=abc123"
INSPECTOR_URL_PATTERN = re.compile(r"http://localhost:\d+/\?[^\s]+")

INSPECTOR_LANDMARK = "text=MCP Inspector"

COMMAND_INPUT = "#command-input"
ARGUMENTS_INPUT = "#arguments-input"
SERVER_COMMAND = "node"

CONNECT_BUTTON = 'button:has-text("Connect")'
DISCONNECT_BUTTON = 'button:has-text("Disconnect")'
CAPABILITY_TAB_BUTTONS = (
    'button:has-text("Tools")',
    'button:has-text("Resources")',
    'button:has-text("Prompts")',
)

TAB_RESOURCES = "Resources"
TAB_TOOLS = "Tools"
TAB_PROMPTS = "Prompts"
TAB_PING = "Ping"
TAB_ELICITATIONS = "Elicitations"

LIST_BUTTONS = {
    TAB_RESOURCES: 'button:has-text("List Resources")',
    TAB_TOOLS: 'button:has-text("List Tools")',
    TAB_PROMPTS: 'button:has-text("List Prompts")',
}

RUN_TOOL_BUTTON = 'button:has-text("Run Tool")'
GET_PROMPT_BUTTON = 'button:has-text("Get Prompt")'
PING_BUTTON = 'button:has-text("Ping")'

# Marker groups are tuples of independent selectors: text= selectors cannot
# be joined into one CSS selector list, so each is probed on its own.
TOOL_ERROR_MARKERS = ('text="Tool Result: Error"', 'text="MCP error"', ".error", '[class*="error"]')
TOOL_SUCCESS_MARKERS = ('text="Tool Result: Success"',)

RESOURCE_CONTENT_MARKERS = (
    "pre", "code", ".json-viewer", "[data-json]", ".resource-content",
    'text="Total Documents"', 'text="Categories"', 'text="Recent Activity"',
    'text="Statistics"', 'text="Documents"', 'text="Collections"',
)
# Scraped-text fragments that indicate a resource body actually rendered
RESOURCE_CONTENT_INDICATORS = (
    "Total Documents", "Categories", "Recent Activity", "Statistics",
    "Documents", "Collections", "Indices", "Content", "Data",
)
RESOURCE_EMPTY_HINT = "Select a resource or template from the list to view its contents"

PROMPT_RESULT_MARKERS = ('pre:has-text("messages")', 'code:has-text("role")', ".json-viewer")

ELICITATION_FORM = (".elicitation-form", '[data-testid="elicitation-form"]')
ELICITATION_SUBMIT = ('button:has-text("Accept")', 'button:has-text("Submit")')

PING_SUCCESS_MARKERS = (
    'text="Success"', 'text="Pong"', 'text="OK"', ".ping-success", '[data-testid="ping-success"]',
)
PING_ANY_RESPONSE_MARKERS = ('text="Response"', 'text="Result"', 'text="Error"')

# Text the Inspector's history pane shows when a server streams progress
PROGRESS_NOTIFICATION_MARKER = "notifications/progress"

# Elements scraped for embedded JSON payloads
JSON_BLOCK_SELECTOR = "pre, code, .json-viewer, [data-json]"


def tab_button(tab_name: str) -> str:
    return f'button:has-text("{tab_name}")'


def item_exact(name: str) -> str:
    """Exact visible-text match for a list entry"""
    return f'text="{name}"'


def item_contains(name: str) -> str:
    """Looser match used when no element has exactly this text"""
    return f'div:has-text("{name}")'


def item_with_icon(name: str) -> str:
    """Resource rows carry a chevron icon next to the name"""
    return f'div:has-text("{name}"):has(svg)'


def items_listed(names: Sequence[str]) -> Tuple[str, ...]:
    """Selectors that match if any of ``names`` is already on screen"""
    return tuple(item_contains(name) for name in names)


@dataclass(frozen=True)
class FieldMatcher:
    """One way of locating the form field for an argument"""
    name: str
    build: Callable[[str], str]

    def selector(self, field_name: str) -> str:
        return self.build(field_name)


# Tried in order; the first selector that matches an element wins.
FIELD_MATCHERS: List[FieldMatcher] = [
    FieldMatcher("input-name", lambda n: f'input[name="{n}"]'),
    FieldMatcher("select-name", lambda n: f'select[name="{n}"]'),
    FieldMatcher("textarea-name", lambda n: f'textarea[name="{n}"]'),
    FieldMatcher("input-placeholder", lambda n: f'input[placeholder*="{n}"]'),
    FieldMatcher("textarea-placeholder", lambda n: f'textarea[placeholder*="{n}"]'),
]

# Prompt forms in the demo servers label a few arguments loosely
PROMPT_FIELD_ALIASES: Dict[str, List[str]] = {
    "topic": ['input[placeholder*="topic"]'],
    "focusAreas": ['input[placeholder*="focus"]'],
}


def field_selectors(field_name: str, aliases: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """
    Ordered candidate selectors for the form field bound to ``field_name``.

    Exact ``name=`` matches come first, then placeholder matches, then any
    per-field aliases.
    """
    candidates = [matcher.selector(field_name) for matcher in FIELD_MATCHERS]
    for extra in (aliases or {}).get(field_name, []):
        if extra not in candidates:
            candidates.append(extra)
    return candidates


def extract_inspector_url(output: str) -> Optional[str]:
    """Pull the Inspector's serving URL out of its stdout, if present"""
    match = INSPECTOR_URL_PATTERN.search(output)
    return match.group(0) if match else None
