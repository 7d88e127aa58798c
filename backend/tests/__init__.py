# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from tdfbridge.models.participant import TournamentParticipant  # noqa: F401
from tdfbridge.models.tournament import Tournament  # noqa: F401
from tdfbridge.models.tournament_file import TournamentFile  # noqa: F401
from tdfbridge.models.user_profile import UserProfile  # noqa: F401
