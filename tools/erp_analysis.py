"""Canned analyses over ERP data."""

import json

from tools.base_tool import Tool
from tools.data_source import DataSourceConnector

ANALYSIS_TYPES = ["top_customers", "vendas_periodo", "analise_vendedores"]


class ErpAnalysisTool(Tool):
    name = "analyze_protheus_data"
    description = (
        "Perform predefined analysis on Protheus data like top customers, "
        "sales performance, vendor analysis"
    )
    parameters = {
        "type": "object",
        "properties": {
            "analysis_type": {
                "type": "string",
                "enum": ANALYSIS_TYPES,
                "description": "Type of predefined analysis to perform",
            },
        },
        "required": ["analysis_type"],
    }

    def __init__(self, connector: DataSourceConnector):
        self.connector = connector

    async def execute(self, **kwargs) -> str:
        data = await self.connector.run_analysis(kwargs["analysis_type"])
        return json.dumps(data, ensure_ascii=False, indent=2, default=str)
