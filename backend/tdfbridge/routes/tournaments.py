from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from tdfbridge.database import get_session
from tdfbridge.models.participant import ParticipantStatus, TournamentParticipant
from tdfbridge.models.tournament import Tournament, TournamentType
from tdfbridge.services.identifiers import is_valid_player_id, is_valid_popid
from tdfbridge.services.tdf_schema import OFFICIAL_ID_PATTERN, clean_player_name

router = APIRouter()


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field} must not be blank")
    return value.strip()


class TournamentCreate(BaseModel):
    name: str
    official_tournament_id: str
    tournament_type: TournamentType
    city: str
    state: Optional[str] = None
    country: str
    start_date: date
    end_date: Optional[date] = None
    organizer_id: str
    organizer_name: str
    organizer_popid: Optional[str] = None

    @field_validator("name", "city", "country", "organizer_name")
    @classmethod
    def validate_required_text(cls, v, info):
        return _require_text(v, info.field_name)

    @field_validator("official_tournament_id")
    @classmethod
    def validate_official_id(cls, v):
        v = (v or "").strip()
        if not OFFICIAL_ID_PATTERN.match(v):
            raise ValueError("official_tournament_id must be 8 alphanumeric characters")
        return v

    @field_validator("organizer_popid")
    @classmethod
    def validate_popid(cls, v):
        if v is not None and not is_valid_popid(v):
            raise ValueError("organizer_popid must be 7 digits")
        return v

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


class TournamentUpdate(BaseModel):
    """official_tournament_id is immutable and deliberately absent."""

    name: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    organizer_name: Optional[str] = None

    @field_validator("name", "city", "country", "organizer_name")
    @classmethod
    def validate_required_text(cls, v, info):
        # Explicit nulls land here too; unset fields are skipped
        return _require_text(v, info.field_name)

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self


class TournamentResponse(BaseModel):
    id: int
    name: str
    official_tournament_id: str
    tournament_type: TournamentType
    city: str
    state: Optional[str]
    country: str
    start_date: date
    end_date: Optional[date]
    organizer_id: str
    organizer_name: str
    organizer_popid: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ParticipantCreate(BaseModel):
    player_name: str
    player_id: Optional[str] = None
    player_birthdate: Optional[date] = None
    user_id: Optional[int] = None
    status: ParticipantStatus = ParticipantStatus.registered

    @field_validator("player_name")
    @classmethod
    def validate_name(cls, v):
        if not clean_player_name(v):
            raise ValueError("player_name must contain printable characters")
        return v.strip()

    @field_validator("player_id")
    @classmethod
    def validate_player_id(cls, v):
        if v is not None and not is_valid_player_id(v):
            raise ValueError("player_id must be 1-7 digits")
        return v

    @field_validator("player_birthdate")
    @classmethod
    def validate_birthdate(cls, v):
        if v is not None and v > date.today():
            raise ValueError("player_birthdate cannot be in the future")
        return v


class ParticipantResponse(BaseModel):
    id: int
    tournament_id: int
    user_id: Optional[int]
    player_name: str
    player_id: Optional[str]
    player_birthdate: Optional[date]
    registration_date: datetime
    registration_source: str
    status: ParticipantStatus

    model_config = ConfigDict(from_attributes=True)


def _get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    tournaments = session.exec(select(Tournament).order_by(Tournament.start_date, Tournament.id)).all()
    return tournaments


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    """Create a new tournament"""
    tournament = Tournament(**tournament_data.model_dump())
    try:
        session.add(tournament)
        session.commit()
        session.refresh(tournament)
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Tournament with official ID '{tournament_data.official_tournament_id}' already exists",
        )
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    return _get_tournament_or_404(session, tournament_id)


@router.put("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(tournament_id: int, tournament_data: TournamentUpdate, session: Session = Depends(get_session)):
    """Update descriptive fields of a tournament"""
    tournament = _get_tournament_or_404(session, tournament_id)

    update_data = tournament_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(tournament, field, value)

    if tournament.end_date and tournament.end_date < tournament.start_date:
        raise HTTPException(status_code=400, detail="end_date must be >= start_date")

    tournament.updated_at = datetime.now(timezone.utc)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}/participants", response_model=List[ParticipantResponse])
def list_participants(tournament_id: int, session: Session = Depends(get_session)):
    """List participants in registration order"""
    _get_tournament_or_404(session, tournament_id)
    participants = session.exec(
        select(TournamentParticipant)
        .where(TournamentParticipant.tournament_id == tournament_id)
        .order_by(TournamentParticipant.registration_date, TournamentParticipant.id)
    ).all()
    return participants


@router.post("/tournaments/{tournament_id}/participants", response_model=ParticipantResponse, status_code=201)
def register_participant(
    tournament_id: int, participant_data: ParticipantCreate, session: Session = Depends(get_session)
):
    """Register a participant manually"""
    _get_tournament_or_404(session, tournament_id)

    participant = TournamentParticipant(tournament_id=tournament_id, **participant_data.model_dump())
    try:
        session.add(participant)
        session.commit()
        session.refresh(participant)
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Player ID '{participant_data.player_id}' is already registered for this tournament",
        )
    return participant
