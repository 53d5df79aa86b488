"""Decides which tools a caller may use and builds their registry."""

from __future__ import annotations

import logging

from agent.config import AgentConfig, DataSourceSettings
from tools.data_source import DataSourceConnector, DataSourceStore
from tools.erp_analysis import ErpAnalysisTool
from tools.erp_query import ErpQueryTool
from tools.tool_registry import ToolRegistry
from tools.web_search import WebSearchTool

_log = logging.getLogger("erp_chat.capabilities")


class CapabilityResolver:
    """
    Builds a fresh ToolRegistry per request containing exactly the tools the
    caller is authorized to use. A caller without an active data-source
    connection gets no registry at all.
    """

    def __init__(self, config: AgentConfig, store: DataSourceStore | None = None):
        self.config = config
        self.store = store or DataSourceStore(config.data_sources)

    def resolve(self, caller_id: str) -> ToolRegistry | None:
        source = self.store.get_active(caller_id) if caller_id else None
        if source is None:
            _log.info("No active data source for caller '%s'", caller_id)
            return None

        registry = ToolRegistry()
        if self.config.search.api_key:
            registry.register(WebSearchTool(self.config.search))

        connector = self.connector_for(source)
        registry.register(ErpQueryTool(connector))
        registry.register(ErpAnalysisTool(connector))
        return registry

    def connector_for(self, source: DataSourceSettings) -> DataSourceConnector:
        return DataSourceConnector(
            source,
            connect_timeout=self.config.provider.connect_timeout,
            read_timeout=self.config.tool_execution.default_timeout,
        )

    def schema_prefix(self, caller_id: str) -> str:
        source = self.store.get_active(caller_id) if caller_id else None
        return source.schema_prefix if source else ""
