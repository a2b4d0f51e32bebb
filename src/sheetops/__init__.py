"""sheetops: reversible in-memory workbook operations driven by direct calls or an LLM agent."""

__version__ = "0.1.0"
