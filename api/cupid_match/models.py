import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Identity row. Written by the account subsystem; the pipeline only reads it."""

    __tablename__ = "app_user"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=True)
    is_test_user = Column(Boolean, nullable=False, default=False)
    is_cupid = Column(Boolean, nullable=False, default=False)
    cupid_approved = Column(Boolean, nullable=False, default=False)
    is_email_verified = Column(Boolean, nullable=False, default=True)
    is_being_matched = Column(Boolean, nullable=False, default=True)
    preferred_candidate_email = Column(String, nullable=True)
    admin_role = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class QuestionnaireResponse(Base):
    __tablename__ = "questionnaire_response"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, unique=True)
    schema_version = Column(Integer, nullable=False)
    answers = Column(JSON, nullable=False, default=dict)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MatchingBatch(Base):
    __tablename__ = "matching_batch"

    batch_number = Column(Integer, primary_key=True, autoincrement=False)
    status = Column(String, nullable=False, default="pending")
    total_users = Column(Integer, nullable=False, default=0)
    total_pairs = Column(Integer, nullable=False, default=0)
    algorithm_matches = Column(Integer, nullable=False, default=0)
    cupid_matches = Column(Integer, nullable=False, default=0)
    scoring_started_at = Column(DateTime(timezone=True), nullable=True)
    scoring_completed_at = Column(DateTime(timezone=True), nullable=True)
    matching_started_at = Column(DateTime(timezone=True), nullable=True)
    matching_completed_at = Column(DateTime(timezone=True), nullable=True)
    revealed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CompatibilityScore(Base):
    __tablename__ = "compatibility_score"

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_number = Column(Integer, ForeignKey("matching_batch.batch_number", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), nullable=False)
    target_user_id = Column(String(36), nullable=False)
    total_score = Column(Float, nullable=False)
    breakdown = Column(JSON, nullable=True)
    is_test = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("batch_number", "user_id", "target_user_id", name="uq_score_batch_pair"),
        CheckConstraint("user_id <> target_user_id", name="ck_score_not_self"),
        Index("idx_score_batch_partition", "batch_number", "is_test"),
        Index("idx_score_batch_user", "batch_number", "user_id"),
    )


class Pairing(Base):
    """One logical match between two users; directional views are derived at read time."""

    __tablename__ = "pairing"

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_number = Column(Integer, ForeignKey("matching_batch.batch_number", ondelete="CASCADE"), nullable=False)
    user_a_id = Column(String(36), nullable=False)
    user_b_id = Column(String(36), nullable=False)
    provenance = Column(String, nullable=False, default="algorithm")
    sender_id = Column(String(36), nullable=True)
    cupid_user_id = Column(String(36), nullable=True)
    score = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="accepted")
    cupid_comment = Column(Text, nullable=True)
    is_test = Column(Boolean, nullable=False, default=False)
    revealed_at = Column(DateTime(timezone=True), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("batch_number", "user_a_id", "user_b_id", name="uq_pairing_batch_pair"),
        CheckConstraint("user_a_id <> user_b_id", name="ck_pairing_not_self"),
        Index("idx_pairing_batch_partition", "batch_number", "is_test"),
    )


class CupidAssignment(Base):
    __tablename__ = "cupid_assignment"

    id = Column(String(36), primary_key=True, default=_uuid)
    cupid_user_id = Column(String(36), nullable=False)
    candidate_id = Column(String(36), nullable=False)
    batch_number = Column(Integer, ForeignKey("matching_batch.batch_number", ondelete="CASCADE"), nullable=False)
    is_test = Column(Boolean, nullable=False, default=False)
    potential_matches = Column(JSON, nullable=False, default=list)
    rejected_matches = Column(JSON, nullable=False, default=list)
    revealed_count = Column(Integer, nullable=False, default=0)
    selected_match_id = Column(String(36), nullable=True)
    selection_reason = Column(Text, nullable=True)
    selected_at = Column(DateTime(timezone=True), nullable=True)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("cupid_user_id", "candidate_id", "batch_number", name="uq_assignment_cupid_candidate_batch"),
        CheckConstraint("cupid_user_id <> candidate_id", name="ck_assignment_not_self"),
        Index("idx_assignment_batch_partition", "batch_number", "is_test"),
    )
    __mapper_args__ = {"version_id_col": version}


class PipelineEvent(Base):
    __tablename__ = "pipeline_event"

    id = Column(String(36), primary_key=True, default=_uuid)
    batch_number = Column(Integer, nullable=True)
    user_id = Column(String(36), nullable=True)
    event_type = Column(String, nullable=False)
    is_test = Column(Boolean, nullable=False, default=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_pipeline_event_batch", "batch_number", "event_type"),)
