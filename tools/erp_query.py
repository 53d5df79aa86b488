"""SQL query tool against the ERP database."""

import json
import re

from agent.exceptions import ToolValidationError
from tools.base_tool import Tool
from tools.data_source import DataSourceConnector

_READ_ONLY = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)


class ErpQueryTool(Tool):
    name = "query_protheus_sql"
    description = "Execute SQL queries against the Protheus Oracle database."
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "SQL SELECT query for Oracle.",
            },
            "description": {
                "type": "string",
                "description": "Brief description of what this query aims to retrieve or analyze",
            },
        },
        "required": ["query", "description"],
    }

    def __init__(self, connector: DataSourceConnector):
        self.connector = connector

    def get_description(self) -> str:
        prefix = self.connector.settings.schema_prefix
        if not prefix:
            return self.description
        return (
            f"{self.description} CRITICAL RULES: 1) ALWAYS prefix tables with schema "
            f"\"{prefix}\" (e.g., \"{prefix}SA1010\") 2) NO \"AS\" keyword for table aliases "
            f"(e.g., \"FROM {prefix}SA1010 SA1\" not \"AS SA1\")"
        )

    async def before_execution(self, **kwargs):
        query = kwargs.get("query", "")
        if not _READ_ONLY.match(query):
            raise ToolValidationError(
                "only read-only SELECT (or WITH ... SELECT) statements are allowed",
                hint=self.connector.sql_hint(),
            )

    async def execute(self, **kwargs) -> str:
        query = kwargs["query"]
        rows = await self.connector.run_query(query)

        if not rows:
            prefix = self.connector.settings.schema_prefix
            return json.dumps({
                "success": True,
                "data": [],
                "message": (
                    "NO DATA FOUND with the applied filters. Possible causes: "
                    "1) filters too restrictive (e.g. D_E_L_E_T_), 2) empty table, "
                    "3) wrong schema. Try a diagnostic query such as "
                    f"\"SELECT COUNT(*) FROM {prefix}SA1010\" or remove filters temporarily."
                ),
                "query": query[:200],
            }, ensure_ascii=False, indent=2)

        return json.dumps(rows, ensure_ascii=False, indent=2, default=str)
