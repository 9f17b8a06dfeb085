"""Area calculator for simple shapes."""

from __future__ import annotations

import math
from typing import Any

from agentpilot.tools.base import Tool, ToolParameter, ToolResult

SHAPES = ("triangle", "rectangle", "circle")


class AreaCalculatorTool(Tool):
    name = "area-calculator"
    description = "Calculates the area of triangles, rectangles and circles"
    category = "calculation"
    parameters = [
        ToolParameter(name="shape", type="string", required=True, default="rectangle", description=", ".join(SHAPES)),
        ToolParameter(name="base", type="number", description="Triangle base or rectangle width"),
        ToolParameter(name="height", type="number", description="Triangle or rectangle height"),
        ToolParameter(name="width", type="number", description="Rectangle width"),
        ToolParameter(name="radius", type="number", description="Circle radius"),
        ToolParameter(name="precision", type="number", default=2, description="Decimal places"),
    ]

    def execute(self, params: dict[str, Any]) -> ToolResult:
        prepared = self.prepare_parameters(params)
        shape = str(prepared["shape"]).lower()
        precision = int(prepared.get("precision", 2))
        if shape == "triangle":
            dimensions = {"base": prepared.get("base"), "height": prepared.get("height")}
            formula = "(base * height) / 2"
        elif shape == "rectangle":
            width = prepared.get("width", prepared.get("base"))
            dimensions = {"width": width, "height": prepared.get("height")}
            formula = "width * height"
        elif shape == "circle":
            dimensions = {"radius": prepared.get("radius")}
            formula = "pi * radius^2"
        else:
            return self.failure(
                f"Invalid shape '{shape}'. Supported shapes: {', '.join(SHAPES)}",
                error_name="ValidationError",
            )
        for key, value in dimensions.items():
            if value is None:
                return self.failure(f"{shape.title()} calculation requires {key}", error_name="ValidationError")
            if value <= 0:
                return self.failure(f"{key.title()} must be a positive number", error_name="ValidationError")
        if shape == "triangle":
            area = dimensions["base"] * dimensions["height"] / 2
        elif shape == "rectangle":
            area = dimensions["width"] * dimensions["height"]
        else:
            area = math.pi * dimensions["radius"] ** 2
        rounded = round(area, precision)
        return self.success(
            {
                "area": rounded,
                "shape": shape,
                "formula": formula,
                "dimensions": dimensions,
                "units": "square units",
            },
            f"Successfully calculated {shape} area: {rounded} square units",
        )
