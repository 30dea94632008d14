from __future__ import annotations

from typing import Annotated, Literal, Optional, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Page points:
# - x,y in page/world units
# - p (pressure) in [0,1]
# - t is ms timestamp (optional on the wire; synthesized when missing)
Point4: TypeAlias = list[float]  # [x, y, p, t]


def _clamp01(x: float) -> float:
    return 0.0 if x < 0.0 else 1.0 if x > 1.0 else x


class Sample(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    t: int
    p: float = 0.5

    @field_validator("p")
    @classmethod
    def _clamp_pressure(cls, v: float) -> float:
        return _clamp01(v)


class Stroke(BaseModel):
    """
    One pen-down/drag/up cycle in page coordinates.

    Immutable once built. At least two samples; timestamps never go backwards.
    """

    model_config = ConfigDict(frozen=True)

    samples: tuple[Sample, ...]

    @model_validator(mode="after")
    def _check_samples(self) -> "Stroke":
        if len(self.samples) < 2:
            raise ValueError("stroke needs at least 2 samples")
        prev = self.samples[0].t
        for s in self.samples[1:]:
            if s.t < prev:
                raise ValueError("stroke timestamps must be non-decreasing")
            prev = s.t
        return self

    def to_service_dict(self) -> dict[str, list[float]]:
        return {
            "x": [s.x for s in self.samples],
            "y": [s.y for s in self.samples],
            "t": [s.t for s in self.samples],
            "p": [s.p for s in self.samples],
        }


class RecognitionResult(BaseModel):
    latex: Optional[str] = None
    expression: Optional[str] = None
    value: Optional[str] = None
    backend: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_text(cls, v: object) -> object:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def usable(self) -> bool:
        return self.value is not None

    def display_text(self) -> str:
        text = str(self.value)
        if "=" in text:
            return text
        return f"= {text}"


# --- websocket messages ---------------------------------------------------------


class Hello(BaseModel):
    t: Literal["hello"] = "hello"
    session: str


class StrokeBegin(BaseModel):
    t: Literal["stroke_begin"]
    id: str
    brush: str = "pen"
    color: Optional[str] = None
    ts: Annotated[Optional[float], Field(description="ms timestamp")] = None


class StrokePts(BaseModel):
    t: Literal["stroke_pts"]
    id: str
    pts: list[Point4]


class StrokeEnd(BaseModel):
    t: Literal["stroke_end"]
    id: str
    ts: Optional[float] = None


class Clear(BaseModel):
    t: Literal["clear"]


class Annotation(BaseModel):
    t: Literal["annotation"] = "annotation"
    id: str
    slot: str
    x: float
    y: float
    text: str
    latex: Optional[str] = None
    expression: Optional[str] = None


class AnnotationRemoved(BaseModel):
    t: Literal["annotation_removed"] = "annotation_removed"
    id: str


InboundMsg: TypeAlias = Annotated[Union[StrokeBegin, StrokePts, StrokeEnd, Clear], Field(discriminator="t")]


# --- REST bodies ----------------------------------------------------------------


class RawStroke(BaseModel):
    x: list[float]
    y: list[float]
    t: Optional[list[float]] = None
    p: Optional[list[float]] = None


class RecognizeRequest(BaseModel):
    strokes: list[RawStroke]


class RecognizeResponse(BaseModel):
    success: bool = True
    result: RecognitionResult


class SolveRequest(BaseModel):
    expression: str
    variables: Optional[dict[str, str]] = None


class SolveResponse(BaseModel):
    success: bool = True
    answer: str


class OcrRequest(BaseModel):
    image: str


class OcrResponse(BaseModel):
    success: bool = True
    expression: Optional[str] = None
    answer: Optional[str] = None
