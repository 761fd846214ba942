import enum

from sqlalchemy import CheckConstraint, Column, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from pharmajoin.db.base_class import Base


class Severidade(str, enum.Enum):
    LEVE = "Leve"
    MODERADA = "Moderada"
    GRAVE = "Grave"


class Paciente(Base):
    __tablename__ = "pacientes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(String(255), nullable=False)


class Medicamento(Base):
    __tablename__ = "medicamentos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(String(100), nullable=False, unique=True)


class PacienteMedicamento(Base):
    """Many-to-many edge; one row per distinct drug held by a patient."""
    __tablename__ = "paciente_medicamentos"
    __table_args__ = (
        Index("ix_paciente_medicamentos_medicamento_id", "medicamento_id"),
    )

    paciente_id = Column(Integer, ForeignKey("pacientes.id", ondelete="CASCADE"), primary_key=True)
    medicamento_id = Column(Integer, ForeignKey("medicamentos.id", ondelete="CASCADE"), primary_key=True)


class InteracaoMedicamentosa(Base):
    """Unordered drug pair stored as (lower id, higher id)."""
    __tablename__ = "interacoes_medicamentosas"
    __table_args__ = (
        UniqueConstraint("med1_id", "med2_id", name="uq_interacao_par"),
        CheckConstraint("med1_id < med2_id", name="ck_interacao_ordem_canonica"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    med1_id = Column(Integer, ForeignKey("medicamentos.id", ondelete="CASCADE"), nullable=False)
    med2_id = Column(Integer, ForeignKey("medicamentos.id", ondelete="CASCADE"), nullable=False)
    severidade = Column(
        Enum(Severidade, name="severidade_interacao", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    descricao = Column(Text, nullable=True)
