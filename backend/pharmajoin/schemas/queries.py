from typing import List
from pydantic import BaseModel, ConfigDict, Field


class PacienteOut(BaseModel):
    id: int
    nome: str

    model_config = ConfigDict(from_attributes=True)


class QueryEnvelope(BaseModel):
    """Uniform response of both query strategies."""
    description: str = Field(..., description="What was computed")
    approach: str = Field(..., description="Strategy label")
    tempoExecucaoMs: float = Field(..., description="Elapsed time in milliseconds, two decimals")
    rowCount: int
    data: List[PacienteOut]


class ErrorResponse(BaseModel):
    error: str


class InternalErrorResponse(BaseModel):
    error: str
    details: str
