"""Percentage calculator."""

from __future__ import annotations

from typing import Any

from agentpilot.tools.base import Tool, ToolParameter, ToolResult

OPERATIONS = ("what_percentage", "percentage_of", "percentage_increase", "percentage_decrease")


class PercentageCalculatorTool(Tool):
    name = "percentage-calculator"
    description = "Performs percentage calculations such as X% of Y and percentage change"
    category = "calculation"
    parameters = [
        ToolParameter(name="operation", type="string", required=True, description=", ".join(OPERATIONS)),
        ToolParameter(name="value", type="number", description="Value for what_percentage and percentage_of"),
        ToolParameter(name="total", type="number", description="Total for what_percentage"),
        ToolParameter(name="percentage", type="number", description="Percentage for percentage_of"),
        ToolParameter(name="original_value", type="number", description="Original value for changes"),
        ToolParameter(name="new_value", type="number", description="New value for changes"),
        ToolParameter(name="precision", type="number", default=2, description="Decimal places"),
    ]

    def execute(self, params: dict[str, Any]) -> ToolResult:
        prepared = self.prepare_parameters(params)
        operation = prepared["operation"]
        precision = int(prepared.get("precision", 2))
        if operation not in OPERATIONS:
            return self.failure(
                f"Invalid operation '{operation}'. Supported operations: {', '.join(OPERATIONS)}",
                error_name="ValidationError",
            )
        try:
            result, formula = self._calculate(operation, prepared)
        except ValueError as exc:
            return self.failure(str(exc), error_name="ValidationError")
        rounded = round(result, precision)
        return self.success(
            {"result": rounded, "operation": operation, "formula": formula, "precision": precision},
            f"Successfully calculated {operation}: {rounded}",
        )

    def _calculate(self, operation: str, params: dict[str, Any]) -> tuple[float, str]:
        if operation == "what_percentage":
            value, total = _require(params, "value", "total")
            if total == 0:
                raise ValueError("Total must not be zero")
            return value / total * 100, "(value / total) * 100"
        if operation == "percentage_of":
            percentage, value = _require(params, "percentage", "value")
            return percentage / 100 * value, "(percentage / 100) * value"
        original, new = _require(params, "original_value", "new_value")
        if original == 0:
            raise ValueError("Original value must not be zero")
        change = (new - original) / original * 100
        if operation == "percentage_decrease":
            return -change, "((original - new) / original) * 100"
        return change, "((new - original) / original) * 100"


def _require(params: dict[str, Any], *names: str) -> list[float]:
    missing = [name for name in names if params.get(name) is None]
    if missing:
        raise ValueError(f"Missing parameters: {', '.join(missing)}")
    return [float(params[name]) for name in names]
