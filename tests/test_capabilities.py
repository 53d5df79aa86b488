import tempfile
import unittest
from pathlib import Path

from agent.config import AgentConfig, DataSourceSettings, SearchConfig
from tools.capabilities import CapabilityResolver


class TestCapabilityResolver(unittest.TestCase):
    def _config(self, tmpdir, search_key=""):
        return AgentConfig(
            log_dir=str(Path(tmpdir) / "logs"),
            search=SearchConfig(api_key=search_key),
            data_sources=[
                DataSourceSettings(user_id="u1", url="http://erp.local", schema_prefix="SCH."),
                DataSourceSettings(user_id="u2", url="http://erp.local", is_active=False),
            ],
        )

    def test_no_active_source_means_no_tools(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            resolver = CapabilityResolver(self._config(tmpdir))
            self.assertIsNone(resolver.resolve("u2"))
            self.assertIsNone(resolver.resolve("unknown"))
            self.assertIsNone(resolver.resolve(""))

    def test_search_tool_only_with_key(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            without = CapabilityResolver(self._config(tmpdir)).resolve("u1")
            with_key = CapabilityResolver(self._config(tmpdir, search_key="k")).resolve("u1")

        self.assertEqual(without.tool_names, ["analyze_protheus_data", "query_protheus_sql"])
        self.assertEqual(
            [d.name for d in with_key.definitions()],
            ["search_web_brave", "query_protheus_sql", "analyze_protheus_data"],
        )

    def test_fresh_registry_per_request(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            resolver = CapabilityResolver(self._config(tmpdir))
            first = resolver.resolve("u1")
            second = resolver.resolve("u1")

        self.assertIsNot(first, second)
        self.assertIsNot(first.get_tool("query_protheus_sql"), second.get_tool("query_protheus_sql"))

    def test_tools_bound_to_caller_connection(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            resolver = CapabilityResolver(self._config(tmpdir))
            registry = resolver.resolve("u1")

        tool = registry.get_tool("query_protheus_sql")
        self.assertEqual(tool.connector.settings.schema_prefix, "SCH.")
        self.assertIn('"SCH."', tool.get_description())
        self.assertEqual(resolver.schema_prefix("u1"), "SCH.")
        self.assertEqual(resolver.schema_prefix("u2"), "")
