# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from tourney_staging.models.bracket import Bracket  # noqa: F401
from tourney_staging.models.couple import Couple, GroupCouple  # noqa: F401
from tourney_staging.models.court import Court  # noqa: F401
from tourney_staging.models.group import StageGroup  # noqa: F401
from tourney_staging.models.match import Match  # noqa: F401
from tourney_staging.models.stage import Stage  # noqa: F401
