"""
Gamification Service for TutorQuest Platform
Turns learner activity (sessions, quizzes, goals, logins) into XP, badges and rankings
"""

import logging

from services.progress_ledger import (
    ProgressLedger, BADGES, LEVELS, level_for, level_info, progress_within_level,
)
from services.quiz_scorer import QuizSession, submission_summary
from utils.error_handler import (
    AlreadySubmittedError, InvalidArgumentError, NotFoundError, ValidationError,
    validate_request_data,
)

logger = logging.getLogger(__name__)

class GamificationService:
    def __init__(self, store, config):
        self.store = store
        self.config = config
        self.ledger = ProgressLedger(store, timezone=config.timezone)

    def complete_session(self, learner_id, session_id, hours=0):
        """
        Reward a finished tutoring session
        """
        try:
            return self.ledger.award_xp(
                learner_id,
                'session_completed',
                self.config.session_completed_xp,
                f"Session completed: {session_id}",
                {'sessions_completed': 1, 'total_study_hours': hours},
            )
        except Exception as e:
            logger.error(f"Error completing session {session_id} for learner {learner_id}: {str(e)}")
            raise

    def complete_goal(self, learner_id, goal_title):
        """
        Reward a learning goal that reached 100%
        """
        try:
            return self.ledger.award_xp(
                learner_id,
                'goal_achieved',
                self.config.goal_achieved_xp,
                f"Goal achieved: {goal_title}",
                {'goals_completed': 1},
            )
        except Exception as e:
            logger.error(f"Error completing goal for learner {learner_id}: {str(e)}")
            raise

    def record_daily_login(self, learner_id, today=None):
        try:
            return self.ledger.update_streak(learner_id, today)
        except Exception as e:
            logger.error(f"Error updating streak for learner {learner_id}: {str(e)}")
            raise

    def submit_quiz(self, session, now=None):
        """
        Score a quiz session, then award XP (plus perfect_score at 100%) and store
        the result together
        """
        try:
            result = session.submit(now)
            award = self.ledger.award_quiz(
                session.learner_id,
                result,
                self.config.quiz_completed_xp,
                self.config.perfect_quiz_xp,
            )

            logger.info(f"Quiz attempt {session.attempt_id} submitted by {session.learner_id}, "
                        f"awarded {award['xp_awarded']} XP")

            return {
                'result': result,
                'summary': submission_summary(result),
                'xp_awarded': award['xp_awarded'],
                'new_xp': award['new_xp'],
                'new_level': award['new_level'],
                'badges_earned': award['badges_earned'],
            }
        except Exception as e:
            logger.error(f"Error submitting quiz attempt {session.attempt_id}: {str(e)}")
            raise

    def submit_quiz_answers(self, attempt_id, payload, now=None):
        """
        Score an attempt posted by the client after its study phase finished
        """
        validate_request_data(payload, ['learner_id', 'quiz_id', 'questions'], {
            'started_at': str,
            'flashcard_count': int,
        })
        if not isinstance(payload['questions'], list):
            raise ValidationError("Field 'questions' must be a list", field='questions')

        if self.store.load_quiz_result(attempt_id) is not None:
            raise AlreadySubmittedError(f"Quiz attempt {attempt_id} was already submitted", attempt_id=attempt_id)

        questions = []
        answers = {}
        for index, question in enumerate(payload['questions']):
            if not isinstance(question, dict) or 'question_id' not in question or 'expected_answer' not in question:
                raise ValidationError(f"Question {index + 1} is missing required fields", field='questions')
            questions.append(question)
            answers[question['question_id']] = question.get('submitted_answer')

        session = QuizSession(
            attempt_id,
            payload['quiz_id'],
            payload['learner_id'],
            questions,
            flashcard_count=payload.get('flashcard_count', 0),
        )
        session.view_all_flashcards()
        session.start_answering(payload.get('started_at'))
        for question_id, submitted in answers.items():
            if submitted is not None:
                session.answer(question_id, submitted)

        return self.submit_quiz(session, now)

    def get_quiz_result(self, attempt_id):
        """
        Stored result of a submitted attempt with its display summary
        """
        try:
            result = self.store.load_quiz_result(attempt_id)
            if result is None:
                raise NotFoundError(f"Quiz result {attempt_id} not found")
            return {'result': result, 'summary': submission_summary(result)}
        except Exception as e:
            logger.error(f"Error getting quiz result {attempt_id}: {str(e)}")
            raise

    def get_progress_summary(self, learner_id):
        """
        Get learner's record with level progress and badge breakdown
        """
        try:
            record = self.ledger.get_progress(learner_id)
            owned = set(record.get('badges', []))

            badges = [{**badge, 'earned': badge['id'] in owned} for badge in BADGES]

            return {
                **record,
                'level_progress': progress_within_level(record['xp']),
                'earned_badges': [b for b in badges if b['earned']],
                'available_badges': [b for b in badges if not b['earned']],
                'earned_count': len(owned),
                'total_badges': len(BADGES),
            }
        except Exception as e:
            logger.error(f"Error getting progress summary for learner {learner_id}: {str(e)}")
            raise

    def get_xp_history(self, learner_id, limit=None):
        limit = self._limit(limit, self.config.xp_history_limit)
        try:
            return self.store.list_transactions(learner_id, limit)
        except Exception as e:
            logger.error(f"Error getting XP history for learner {learner_id}: {str(e)}")
            raise

    def get_leaderboard(self, limit=None):
        """
        Learners ranked by XP
        """
        limit = self._limit(limit, self.config.leaderboard_limit)
        try:
            entries = []
            for rank, record in enumerate(self.store.top_progress(limit), 1):
                level = level_for(record.get('xp', 0))
                entries.append({
                    'rank': rank,
                    'learner_id': record['learner_id'],
                    'xp': record.get('xp', 0),
                    'level': level,
                    'title': level_info(level)['title'],
                    'streak': record.get('streak', 0),
                    'badges': len(record.get('badges', [])),
                })
            return {'entries': entries, 'total_entries': len(entries)}
        except Exception as e:
            logger.error(f"Error getting leaderboard: {str(e)}")
            raise

    def get_badge_catalogue(self):
        return list(BADGES)

    def get_level_table(self):
        return list(LEVELS)

    def _limit(self, limit, default):
        if limit is None:
            return default
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"limit must be an integer, got {limit!r}", field='limit')
        if limit <= 0:
            raise InvalidArgumentError("limit must be positive", field='limit')
        return limit
