"""Parsed financial statement models (document ingestion boundary)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StatementLine(BaseModel):
    """One line item with a value per reporting period."""

    name: str
    values: list[float] = Field(default_factory=list)


class Statement(BaseModel):
    """A single statement: title, period labels and line items."""

    title: str
    periods: list[str] = Field(min_length=1)
    lines: list[StatementLine] = Field(default_factory=list)
    scale: str | None = None
    currency: str | None = None

    def normalized(self) -> "Statement":
        """Pad or truncate every line's values to the number of periods."""
        n = len(self.periods)
        lines = [
            StatementLine(name=line.name, values=(line.values[:n] + [0.0] * max(0, n - len(line.values))))
            for line in self.lines
        ]
        return self.model_copy(update={"lines": lines})


class StatementMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str | None = None
    company: str | None = None
    fiscal_year_end: str | None = Field(default=None, alias="fiscalYearEnd")


class ParsedStatements(BaseModel):
    """The three statements extracted from one filing."""

    income: Statement
    balance: Statement
    cashflow: Statement
    meta: StatementMeta | None = None
