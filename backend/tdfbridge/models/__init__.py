from tdfbridge.models.participant import ParticipantStatus, TournamentParticipant
from tdfbridge.models.tournament import Tournament, TournamentType
from tdfbridge.models.tournament_file import TournamentFile
from tdfbridge.models.user_profile import UserProfile

__all__ = [
    "Tournament",
    "TournamentType",
    "TournamentParticipant",
    "ParticipantStatus",
    "TournamentFile",
    "UserProfile",
]
