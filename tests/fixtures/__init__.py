from .quiz_bank import (
    OWNER,
    QUESTION_RECORDS,
    QUIZ_ID,
    make_questions,
    right_choice,
    wrong_choice,
    write_quiz_bank,
)

__all__ = [
    "OWNER",
    "QUESTION_RECORDS",
    "QUIZ_ID",
    "make_questions",
    "right_choice",
    "wrong_choice",
    "write_quiz_bank",
]
