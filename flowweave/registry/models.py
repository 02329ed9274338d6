"""Pydantic models describing registered node types."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class PortDescriptor(BaseModel):
    """Describes a single input or output port of a node type."""

    name: str
    required: bool = False
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _ensure_name(cls, v: str) -> str:
        if not v:
            raise ValueError("port name must be a non-empty string")
        return v


class NodeTypeDescriptor(BaseModel):
    """Metadata describing a node type and its port contract.

    An empty ``outputs`` list means the handler may emit any port.
    """

    name: str
    description: Optional[str] = None
    inputs: List[PortDescriptor] = Field(
        default_factory=lambda: [PortDescriptor(name="input")]
    )
    outputs: List[PortDescriptor] = Field(default_factory=list)
    requires_credential: bool = False

    @property
    def required_inputs(self) -> List[str]:
        return [p.name for p in self.inputs if p.required]

    @property
    def output_names(self) -> List[str]:
        return [p.name for p in self.outputs]
