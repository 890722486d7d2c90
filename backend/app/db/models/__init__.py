"""ORM models exposed for metadata discovery."""
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.habit import Habit
from app.db.models.habit_log import HabitLog
from app.db.models.tag import Tag, habit_tags
from app.db.models.user import User
from app.db.models.user_fact import UserFact

__all__ = [
    "AgentActionLog",
    "Habit",
    "HabitLog",
    "Tag",
    "User",
    "UserFact",
    "habit_tags",
]
