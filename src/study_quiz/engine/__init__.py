"""Quiz session engine: selection, persistence, navigation and scoring."""

from .auth import AuthorizationGate  # noqa: F401
from .config import (  # noqa: F401
    CONFIG_PATH_ENV,
    ConfigError,
    EngineConfig,
    config_template,
    load_config,
    resolve_config_path,
    write_template,
)
from .errors import (  # noqa: F401
    AlreadyAnswered,
    EmptySelection,
    Forbidden,
    InvalidArgument,
    InvalidTransition,
    NotFound,
    PositionNotFrontier,
    QuizEngineError,
    SessionStoreError,
    StaleState,
)
from .evaluator import AnswerEvaluator, AnswerResult  # noqa: F401
from .models import (  # noqa: F401
    Answered,
    Question,
    Quiz,
    QuizSession,
    SelectionMode,
    SessionItem,
    SessionStatus,
    UNANSWERED,
    Unanswered,
    frontier_of,
)
from .navigation import Intent, NavigationResolver, parse_intent  # noqa: F401
from .results import (  # noqa: F401
    CategoryAccuracy,
    CategoryStats,
    DailyAccuracy,
    QuizStats,
    ResultsAggregator,
    SessionReport,
    Summary,
)
from .selector import SessionSelector  # noqa: F401
from .service import PositionView, QuizEngine  # noqa: F401
from .source import (  # noqa: F401
    JsonlQuestionSource,
    QuestionSource,
    StaticQuestionSource,
)
from .store import (  # noqa: F401
    BaseSessionStore,
    InMemorySessionStore,
    SessionStore,
)

__all__ = [
    "AuthorizationGate",
    "CONFIG_PATH_ENV",
    "ConfigError",
    "EngineConfig",
    "config_template",
    "load_config",
    "resolve_config_path",
    "write_template",
    "AlreadyAnswered",
    "EmptySelection",
    "Forbidden",
    "InvalidArgument",
    "InvalidTransition",
    "NotFound",
    "PositionNotFrontier",
    "QuizEngineError",
    "SessionStoreError",
    "StaleState",
    "AnswerEvaluator",
    "AnswerResult",
    "Answered",
    "Question",
    "Quiz",
    "QuizSession",
    "SelectionMode",
    "SessionItem",
    "SessionStatus",
    "UNANSWERED",
    "Unanswered",
    "frontier_of",
    "Intent",
    "NavigationResolver",
    "parse_intent",
    "CategoryAccuracy",
    "CategoryStats",
    "DailyAccuracy",
    "QuizStats",
    "ResultsAggregator",
    "SessionReport",
    "Summary",
    "SessionSelector",
    "PositionView",
    "QuizEngine",
    "JsonlQuestionSource",
    "QuestionSource",
    "StaticQuestionSource",
    "BaseSessionStore",
    "InMemorySessionStore",
    "SessionStore",
]
