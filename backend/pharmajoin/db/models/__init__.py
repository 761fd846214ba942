from pharmajoin.db.models.clinical import (
    InteracaoMedicamentosa,
    Medicamento,
    Paciente,
    PacienteMedicamento,
    Severidade,
)

__all__ = [
    "InteracaoMedicamentosa",
    "Medicamento",
    "Paciente",
    "PacienteMedicamento",
    "Severidade",
]
