from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ChartType(str, Enum):
    HORIZONTAL_BAR = "horizontal-bar"
    BAR_VERTICAL = "bar-vertical"
    LINE = "line"
    MULTI_LINE = "multi-line"
    HISTOGRAM = "histogram"
    PIE = "pie"
    TREEMAP = "treemap"
    SCATTER = "scatter"


class Axis(BaseModel):
    label: str
    format: Literal["currency", "number", "date", "text"] = "text"


class Axes(BaseModel):
    x: Axis
    y: Axis


# Points
class CategoryPoint(BaseModel):
    label: str
    value: float


class TimePoint(BaseModel):
    x: str  # ISO-8601 timestamp
    y: float


class Series(BaseModel):
    name: str
    values: List[TimePoint]


class HistogramBin(BaseModel):
    lower: float
    upper: float
    count: int


class XYPoint(BaseModel):
    x: float
    y: float
    label: Optional[str] = None


# Per-chart configuration
class BarConfig(BaseModel):
    sorted: bool = False
    show_values: bool = True
    grouped: bool = False


class LineConfig(BaseModel):
    show_points: bool = True
    show_tooltip: bool = True


class HistogramConfig(BaseModel):
    bins: int


class PieConfig(BaseModel):
    show_percentage: bool = True
    donut: bool = False


class TreemapConfig(BaseModel):
    show_values: bool = True


class ScatterConfig(BaseModel):
    show_tooltip: bool = True


class _Chart(BaseModel):
    title: str = ""
    subtitle: str = ""
    axes: Axes


class HorizontalBarChart(_Chart):
    chart_type: Literal["horizontal-bar"] = "horizontal-bar"
    orientation: Literal["horizontal"] = "horizontal"
    data: List[CategoryPoint] = Field(min_length=1)
    config: BarConfig = BarConfig(sorted=True)


class VerticalBarChart(_Chart):
    chart_type: Literal["bar-vertical"] = "bar-vertical"
    orientation: Literal["vertical"] = "vertical"
    data: List[CategoryPoint] = Field(min_length=1)
    config: BarConfig = BarConfig()


class LineChart(_Chart):
    chart_type: Literal["line"] = "line"
    orientation: Optional[str] = None
    data: List[TimePoint] = Field(min_length=1)
    config: LineConfig = LineConfig()


class MultiLineChart(_Chart):
    chart_type: Literal["multi-line"] = "multi-line"
    orientation: Optional[str] = None
    data: List[Series] = Field(min_length=1)
    config: LineConfig = LineConfig()


class HistogramChart(_Chart):
    chart_type: Literal["histogram"] = "histogram"
    orientation: Literal["vertical"] = "vertical"
    data: List[HistogramBin] = Field(min_length=1)
    config: HistogramConfig


class PieChart(_Chart):
    chart_type: Literal["pie"] = "pie"
    orientation: Optional[str] = None
    data: List[CategoryPoint] = Field(min_length=1)
    config: PieConfig = PieConfig()


class TreemapChart(_Chart):
    chart_type: Literal["treemap"] = "treemap"
    orientation: Optional[str] = None
    data: List[CategoryPoint] = Field(min_length=1)
    config: TreemapConfig = TreemapConfig()


class ScatterChart(_Chart):
    chart_type: Literal["scatter"] = "scatter"
    orientation: Optional[str] = None
    data: List[XYPoint] = Field(min_length=1)
    config: ScatterConfig = ScatterConfig()


VisualizationSpec = Annotated[
    Union[
        HorizontalBarChart,
        VerticalBarChart,
        LineChart,
        MultiLineChart,
        HistogramChart,
        PieChart,
        TreemapChart,
        ScatterChart,
    ],
    Field(discriminator="chart_type"),
]
