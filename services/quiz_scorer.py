"""
Quiz Scorer for TutorQuest Platform
Handles the study -> answer -> submit flow of a quiz attempt and grading
"""

import logging
import math

from utils.dates import utcnow, parse_timestamp
from utils.error_handler import InvalidArgumentError, InvalidStateError, AlreadySubmittedError

logger = logging.getLogger(__name__)

NOT_STARTED = 'not_started'
STUDYING = 'studying'
ANSWERING = 'answering'
SUBMITTED = 'submitted'

CORRECT = 'correct'
WRONG = 'wrong'
SKIPPED = 'skipped'

MAX_FLASHCARDS = 500

def grade_answer(expected_answer, submitted_answer):
    """
    Exact, case-sensitive comparison; MCQ prefixes such as "A) " must match too
    """
    if submitted_answer is None or submitted_answer == '':
        return SKIPPED
    if submitted_answer == expected_answer:
        return CORRECT
    return WRONG

def score(attempt, now):
    """
    Grade a completed attempt and return its QuizResult
    """
    questions = attempt.get('questions') or []
    total_questions = len(questions)
    if total_questions == 0:
        raise InvalidArgumentError("Quiz must have at least one question to be scored", field='questions')

    answers = []
    tally = {CORRECT: 0, WRONG: 0, SKIPPED: 0}
    for question in questions:
        submitted = question.get('submitted_answer')
        outcome = grade_answer(question.get('expected_answer'), submitted)
        tally[outcome] += 1
        answers.append({
            'question_id': question.get('question_id'),
            'submitted_answer': submitted if submitted != '' else None,
            'is_correct': outcome == CORRECT,
            'outcome': outcome,
        })

    completed_at = parse_timestamp(now)
    started_at = parse_timestamp(attempt.get('started_at')) or completed_at
    elapsed = (completed_at - started_at).total_seconds()

    return {
        'attempt_id': attempt.get('attempt_id'),
        'quiz_id': attempt.get('quiz_id'),
        'learner_id': attempt.get('learner_id'),
        'total_questions': total_questions,
        'correct_answers': tally[CORRECT],
        'wrong_answers': tally[WRONG],
        'skipped': tally[SKIPPED],
        'accuracy': int(math.floor(100 * tally[CORRECT] / total_questions + 0.5)),
        'time_taken_seconds': max(0, int(math.floor(elapsed))),
        'answers': answers,
        'completed_at': completed_at,
    }

def submission_summary(result):
    """
    Categorise a scored result for display
    """
    accuracy = result['accuracy']
    if accuracy >= 80:
        category = 'excellent'
    elif accuracy >= 60:
        category = 'good'
    else:
        category = 'needs_practice'

    return {
        'category': category,
        'is_perfect': accuracy == 100,
        'answered': result['correct_answers'] + result['wrong_answers'],
    }

class QuizSession:
    """
    A single learner's pass through one quiz: flashcards first, then questions
    """

    def __init__(self, attempt_id, quiz_id, learner_id, questions, flashcard_count=0, clock=utcnow):
        if flashcard_count < 0:
            raise InvalidArgumentError("flashcard_count cannot be negative", field='flashcard_count')
        if flashcard_count > MAX_FLASHCARDS:
            raise InvalidArgumentError(f"flashcard_count cannot exceed {MAX_FLASHCARDS}", field='flashcard_count')

        self.attempt_id = attempt_id
        self.quiz_id = quiz_id
        self.learner_id = learner_id
        self.questions = [
            {'question_id': q['question_id'], 'expected_answer': q['expected_answer']}
            for q in questions
        ]
        self.flashcard_count = flashcard_count
        self.clock = clock

        self.state = NOT_STARTED
        self.viewed_flashcards = set()
        self.current_flashcard = 0
        self.current_question = 0
        self.answers = {q['question_id']: None for q in self.questions}
        self.started_at = None
        self.result = None

    # -- study phase --

    def view_flashcard(self, index):
        self._require(NOT_STARTED, STUDYING)
        if not 0 <= index < self.flashcard_count:
            raise InvalidArgumentError(f"Flashcard {index} out of range", field='index')
        self.state = STUDYING
        self.current_flashcard = index
        self.viewed_flashcards.add(index)
        return index

    def next_flashcard(self):
        """
        Move to the next flashcard; advancing past the last one starts answering
        """
        if self.state == NOT_STARTED:
            if self.flashcard_count == 0:
                return self.start_answering()
            return self.view_flashcard(0)
        self._require(STUDYING)
        if self.current_flashcard + 1 < self.flashcard_count:
            return self.view_flashcard(self.current_flashcard + 1)
        return self.start_answering()

    def previous_flashcard(self):
        self._require(STUDYING)
        return self.view_flashcard(max(0, self.current_flashcard - 1))

    def view_all_flashcards(self):
        """
        Mark the whole deck as studied, for attempts whose study phase ran on the client
        """
        self._require(NOT_STARTED, STUDYING)
        if self.flashcard_count == 0:
            return
        self.state = STUDYING
        self.viewed_flashcards = set(range(self.flashcard_count))
        self.current_flashcard = self.flashcard_count - 1

    @property
    def all_flashcards_viewed(self):
        return len(self.viewed_flashcards) == self.flashcard_count

    def start_answering(self, started_at=None):
        self._require(NOT_STARTED, STUDYING)
        if not self.all_flashcards_viewed:
            remaining = self.flashcard_count - len(self.viewed_flashcards)
            raise InvalidStateError(f"{remaining} flashcard(s) still to study", state=self.state)
        self.state = ANSWERING
        self.current_question = 0
        self.started_at = parse_timestamp(started_at) if started_at is not None else self.clock()
        return self.state

    # -- answer phase --

    def answer(self, question_id, submitted_answer):
        self._require(ANSWERING)
        if question_id not in self.answers:
            raise InvalidArgumentError(f"Unknown question: {question_id}", field='question_id')
        self.answers[question_id] = submitted_answer

    def goto_question(self, index):
        self._require(ANSWERING)
        if not 0 <= index < len(self.questions):
            raise InvalidArgumentError(f"Question {index} out of range", field='index')
        self.current_question = index
        return self.questions[index]

    def next_question(self):
        return self.goto_question(min(self.current_question + 1, len(self.questions) - 1))

    def previous_question(self):
        return self.goto_question(max(self.current_question - 1, 0))

    @property
    def answered_count(self):
        return len([a for a in self.answers.values() if a not in (None, '')])

    def to_attempt(self, submitted_at=None):
        return {
            'attempt_id': self.attempt_id,
            'quiz_id': self.quiz_id,
            'learner_id': self.learner_id,
            'questions': [
                {**q, 'submitted_answer': self.answers[q['question_id']]}
                for q in self.questions
            ],
            'flashcard_count': self.flashcard_count,
            'started_at': self.started_at,
            'submitted_at': submitted_at,
        }

    def submit(self, now=None):
        """
        Score the answers as they stand and close the attempt
        """
        if self.state == SUBMITTED:
            raise AlreadySubmittedError(f"Quiz attempt {self.attempt_id} was already submitted",
                                        attempt_id=self.attempt_id)
        self._require(ANSWERING)

        submitted_at = parse_timestamp(now) if now is not None else self.clock()
        result = score(self.to_attempt(submitted_at), submitted_at)

        self.state = SUBMITTED
        self.result = result
        logger.info(f"Scored quiz attempt {self.attempt_id} for learner {self.learner_id}: "
                    f"{result['correct_answers']}/{result['total_questions']} ({result['accuracy']}%)")
        return result

    def _require(self, *states):
        if self.state not in states:
            raise InvalidStateError(
                f"Quiz attempt is {self.state}, expected {' or '.join(states)}",
                state=self.state,
            )
