"""Coin amounts for every rewarded learning event.

All formulas that turn a lesson or quiz outcome into coins live here.
"""

from __future__ import annotations

from tilawa.timeutil import round_half_up

COIN_REWARDS: dict[str, int] = {
    # Lessons
    "LESSON_COMPLETE": 20,
    "LESSON_ACCURACY_HIGH": 10,  # accuracy >= 95
    "LESSON_ACCURACY_GOOD": 5,  # accuracy >= 85
    # Quizzes
    "QUIZ_PASS": 50,
    "QUIZ_PERFECT": 50,
    "QUIZ_EXCELLENT": 30,  # >= 90%
    "QUIZ_GOOD": 10,  # >= 80%
    "QUIZ_FIRST_ATTEMPT": 20,
    "QUIZ_ATTEMPT": 10,  # consolation for a failed attempt
    # Mistakes
    "MISTAKE_RESOLVED": 15,
}

QUIZ_PASS_PERCENTAGE = 60


def quiz_percentage(score: int, total_questions: int) -> int:
    """Score as a whole percentage, rounded half up."""
    return round_half_up(score / total_questions * 100)


def calculate_quiz_coins(percentage: int, attempts: int) -> int:
    """Coins for one quiz submission.

    A failed attempt earns only the consolation amount. A pass earns the
    base amount, a score bonus (perfect, excellent or good) and a bonus
    when it is the first attempt at that quiz.
    """
    if percentage < QUIZ_PASS_PERCENTAGE:
        return COIN_REWARDS["QUIZ_ATTEMPT"]

    coins = COIN_REWARDS["QUIZ_PASS"]
    if percentage == 100:
        coins += COIN_REWARDS["QUIZ_PERFECT"]
    elif percentage >= 90:
        coins += COIN_REWARDS["QUIZ_EXCELLENT"]
    elif percentage >= 80:
        coins += COIN_REWARDS["QUIZ_GOOD"]

    if attempts == 1:
        coins += COIN_REWARDS["QUIZ_FIRST_ATTEMPT"]
    return coins


def quiz_transaction_type(percentage: int) -> str:
    """Ledger type for a quiz credit."""
    if percentage < QUIZ_PASS_PERCENTAGE:
        return "quiz_attempt"
    if percentage == 100:
        return "quiz_perfect"
    return "quiz_pass"


def calculate_lesson_coins(accuracy: float) -> int:
    """Coins for completing a lesson: a flat amount plus an accuracy bonus."""
    coins = COIN_REWARDS["LESSON_COMPLETE"]
    if accuracy >= 95:
        coins += COIN_REWARDS["LESSON_ACCURACY_HIGH"]
    elif accuracy >= 85:
        coins += COIN_REWARDS["LESSON_ACCURACY_GOOD"]
    return coins
