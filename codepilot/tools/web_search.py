"""Web search tool provider powered by the Tavily API."""

from typing import Any

import httpx

from codepilot.exceptions import ConfigurationError, ProviderNotConnectedError, ToolExecutionError
from codepilot.models.llm import ToolDescriptor
from codepilot.utils.logging import get_logger

logger = get_logger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"

WEB_SEARCH_TOOL = ToolDescriptor(
    name="web_search",
    description=(
        "Search the web for current information, news, documentation, or any topic. "
        "Returns relevant results with summaries and links."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The search query to look up on the web",
            },
            "maxResults": {
                "type": "number",
                "description": "Maximum number of results to return (default: 5)",
            },
        },
        "required": ["query"],
    },
)


class WebSearchProvider:
    """Single-tool provider exposing ``web_search``."""

    def __init__(
        self,
        api_key: str,
        name: str = "web_search",
        base_url: str = TAVILY_SEARCH_URL,
        timeout: float = 20.0,
        default_max_results: int = 5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Tavily API key
            name: Provider name used in the registry
            base_url: Search endpoint
            timeout: Request timeout in seconds
            default_max_results: Results returned when the model does not ask for a count
            transport: Optional httpx transport (used by tests)
        """
        self.name = name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.default_max_results = default_max_results
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your_tavily_api_key_here"

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if not self.is_configured:
            raise ConfigurationError("Web search not configured. Please set TAVILY_API_KEY in .env file.")
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def list_tools(self) -> list[ToolDescriptor]:
        return [WEB_SEARCH_TOOL]

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> str:
        """Run a search and format the results for the model."""
        if tool_name != WEB_SEARCH_TOOL.name:
            raise ToolExecutionError(tool_name, f"unsupported by provider {self.name}")

        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ToolExecutionError(tool_name, "query is required")

        max_results = int(arguments.get("maxResults") or self.default_max_results)
        results = await self.search(query, max_results=max_results)
        return self.format_results(results)

    async def search(
        self, query: str, max_results: int = 5, search_depth: str = "basic", include_answer: bool = True
    ) -> dict[str, Any]:
        """Search the web.

        Args:
            query: Search query
            max_results: Maximum number of results
            search_depth: "basic" or "advanced"
            include_answer: Ask the API for a synthesized answer

        Returns:
            Dict with an optional ``answer`` and a ``results`` list of title/url/content/score
        """
        if self._client is None:
            raise ProviderNotConnectedError(self.name)

        logger.debug(f"Web search: {query!r} (max_results={max_results})")
        try:
            response = await self._client.post(
                self.base_url,
                json={
                    "query": query,
                    "search_depth": search_depth,
                    "max_results": max_results,
                    "include_answer": include_answer,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ToolExecutionError(WEB_SEARCH_TOOL.name, f"Web search failed: {e}") from e

        data = response.json()
        return {
            "answer": data.get("answer"),
            "results": [
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "content": item.get("content", ""),
                    "score": item.get("score"),
                }
                for item in data.get("results") or []
            ],
        }

    @staticmethod
    def format_results(results: dict[str, Any]) -> str:
        output = ""
        if results.get("answer"):
            output += f"Answer: {results['answer']}\n\n"

        output += "Search Results:\n"
        for index, result in enumerate(results.get("results", []), start=1):
            output += f"\n{index}. {result['title']}\n"
            output += f"   URL: {result['url']}\n"
            output += f"   {result['content']}\n"

        return output
