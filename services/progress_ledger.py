"""
Progress Ledger for TutorQuest Platform
Handles XP accrual, level progression, daily streaks and badge unlocking
"""

import copy
import logging
import math

from utils.dates import utcnow, today as current_date, yesterday, date_key, parse_date
from utils.error_handler import InvalidArgumentError

logger = logging.getLogger(__name__)

LEVELS = [
    {'level': 1, 'title': 'Beginner', 'xp_required': 0},
    {'level': 2, 'title': 'Learner', 'xp_required': 100},
    {'level': 3, 'title': 'Explorer', 'xp_required': 300},
    {'level': 4, 'title': 'Achiever', 'xp_required': 600},
    {'level': 5, 'title': 'Scholar', 'xp_required': 1000},
    {'level': 6, 'title': 'Expert', 'xp_required': 1500},
    {'level': 7, 'title': 'Master', 'xp_required': 2500},
    {'level': 8, 'title': 'Champion', 'xp_required': 4000},
    {'level': 9, 'title': 'Legend', 'xp_required': 6000},
    {'level': 10, 'title': 'Grandmaster', 'xp_required': 10000},
]

BADGES = [
    {'id': 'first_steps', 'name': 'First Steps', 'description': 'Complete your first session', 'icon': '👣', 'tier': 'bronze'},
    {'id': 'quiz_whiz', 'name': 'Quiz Whiz', 'description': 'Complete 5 quizzes', 'icon': '🧠', 'tier': 'silver'},
    {'id': 'perfect_score', 'name': 'Perfect Score', 'description': 'Get 100% on a quiz', 'icon': '💯', 'tier': 'gold'},
    {'id': 'goal_getter', 'name': 'Goal Getter', 'description': 'Complete your first learning goal', 'icon': '🎯', 'tier': 'bronze'},
    {'id': 'streak_starter', 'name': 'Streak Starter', 'description': '3-day streak', 'icon': '🔥', 'tier': 'bronze'},
    {'id': 'week_warrior', 'name': 'Week Warrior', 'description': '7-day streak', 'icon': '⚔️', 'tier': 'silver'},
    {'id': 'monthly_master', 'name': 'Monthly Master', 'description': '30-day streak', 'icon': '👑', 'tier': 'gold'},
    {'id': 'session_pro', 'name': 'Session Pro', 'description': 'Complete 10 sessions', 'icon': '🎓', 'tier': 'silver'},
    {'id': 'knowledge_seeker', 'name': 'Knowledge Seeker', 'description': 'Complete 25 quizzes', 'icon': '📚', 'tier': 'gold'},
    {'id': 'dedicated_learner', 'name': 'Dedicated Learner', 'description': 'Reach Level 5', 'icon': '⭐', 'tier': 'silver'},
    {'id': 'top_scholar', 'name': 'Top Scholar', 'description': 'Reach Level 10', 'icon': '🏆', 'tier': 'gold'},
]

BADGE_IDS = [badge['id'] for badge in BADGES]

# perfect_score is granted by the quiz submission flow, not derived from counters
BADGE_RULES = [
    ('first_steps', lambda r: r['sessions_completed'] >= 1),
    ('quiz_whiz', lambda r: r['quizzes_completed'] >= 5),
    ('goal_getter', lambda r: r['goals_completed'] >= 1),
    ('streak_starter', lambda r: r['longest_streak'] >= 3),
    ('week_warrior', lambda r: r['longest_streak'] >= 7),
    ('monthly_master', lambda r: r['longest_streak'] >= 30),
    ('session_pro', lambda r: r['sessions_completed'] >= 10),
    ('knowledge_seeker', lambda r: r['quizzes_completed'] >= 25),
    ('dedicated_learner', lambda r: r['level'] >= 5),
    ('top_scholar', lambda r: r['level'] >= 10),
]

XP_KINDS = (
    'session_completed',
    'quiz_completed',
    'goal_achieved',
    'streak_bonus',
    'login_bonus',
    'perfect_quiz',
)

COUNTERS = ('sessions_completed', 'quizzes_completed', 'goals_completed', 'total_study_hours')

DAILY_LOGIN_XP = 10
STREAK_MILESTONES = {7: 50, 30: 200}

def round_half_up(value):
    """
    Round a non-negative number to the nearest integer, halves going up
    """
    return int(math.floor(value + 0.5))

def level_for(xp):
    """
    Highest level whose threshold is <= xp
    """
    current = LEVELS[0]
    for level in LEVELS:
        if xp >= level['xp_required']:
            current = level
        else:
            break
    return current['level']

def level_info(level):
    for entry in LEVELS:
        if entry['level'] == level:
            return entry
    raise InvalidArgumentError(f"Unknown level: {level}")

def progress_within_level(xp):
    """
    Position of xp inside its level band
    """
    current = level_info(level_for(xp))
    following = next((l for l in LEVELS if l['level'] == current['level'] + 1), None)
    next_threshold = following['xp_required'] if following else current['xp_required']
    span = next_threshold - current['xp_required']

    if span > 0:
        percent = min(100, round_half_up(100 * (xp - current['xp_required']) / span))
    else:
        percent = 100

    return {
        'level': current['level'],
        'title': current['title'],
        'current_threshold': current['xp_required'],
        'next_threshold': next_threshold,
        'percent_to_next': percent,
    }

def new_progress_record(learner_id, now):
    return {
        'learner_id': learner_id,
        'xp': 0,
        'level': 1,
        'streak': 0,
        'longest_streak': 0,
        'last_active_date': '',
        'badges': [],
        'sessions_completed': 0,
        'quizzes_completed': 0,
        'goals_completed': 0,
        'total_study_hours': 0,
        'created_at': now,
        'updated_at': now,
    }

def normalize_record(record, learner_id, now):
    """
    Fill any fields missing from an older stored record
    """
    normalized = new_progress_record(learner_id, record.get('created_at') or now)
    normalized.update(copy.deepcopy(record))
    normalized['learner_id'] = learner_id
    normalized['badges'] = list(dict.fromkeys(normalized.get('badges') or []))
    normalized['last_active_date'] = date_key(normalized.get('last_active_date'))
    normalized['level'] = level_for(normalized['xp'])
    return normalized

def evaluate_badges(record):
    """
    Badge ids whose condition now holds and which the record does not own yet
    """
    owned = set(record['badges'])
    return [badge_id for badge_id, condition in BADGE_RULES
            if badge_id not in owned and condition(record)]

def make_transaction(learner_id, kind, amount, description, now):
    return {
        'learner_id': learner_id,
        'kind': kind,
        'xp_amount': amount,
        'description': description,
        'created_at': now,
    }

def validate_amount(amount):
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidArgumentError(f"XP amount must be a positive integer, got {amount!r}", field='amount')

def validate_counter_deltas(counter_deltas):
    for counter, delta in (counter_deltas or {}).items():
        if counter not in COUNTERS:
            raise InvalidArgumentError(f"Unknown counter: {counter}", field='counter_deltas')
        if isinstance(delta, bool) or not isinstance(delta, int) or delta < 0:
            raise InvalidArgumentError(f"Counter delta for {counter} must be a non-negative integer", field='counter_deltas')

def apply_xp(record, amount, counter_deltas, now):
    """
    Return a copy of record with xp, counters, level and badges updated
    """
    updated = copy.deepcopy(record)
    updated['xp'] += amount
    for counter, delta in (counter_deltas or {}).items():
        updated[counter] = updated.get(counter, 0) + delta
    updated['level'] = level_for(updated['xp'])
    earned = evaluate_badges(updated)
    updated['badges'] = updated['badges'] + earned
    updated['updated_at'] = now
    return updated, earned

def apply_streak(record, day, now):
    """
    Advance the streak for day; returns (record, bonuses) or (None, []) when day is
    already counted or precedes the last active date
    """
    last_active = parse_date(record.get('last_active_date'))
    if last_active is not None and day <= last_active:
        return None, []

    updated = copy.deepcopy(record)
    if last_active is not None and last_active == yesterday(day):
        updated['streak'] = record['streak'] + 1
    else:
        updated['streak'] = 1
    updated['longest_streak'] = max(record['longest_streak'], updated['streak'])
    updated['last_active_date'] = date_key(day)

    bonuses = [(DAILY_LOGIN_XP, 'Daily login bonus')]
    milestone = STREAK_MILESTONES.get(updated['streak'])
    if milestone:
        bonuses.append((milestone, f"{updated['streak']}-day streak bonus!"))

    updated['xp'] += sum(amount for amount, _ in bonuses)
    updated['level'] = level_for(updated['xp'])
    updated['badges'] = updated['badges'] + evaluate_badges(updated)
    updated['updated_at'] = now
    return updated, bonuses

class ProgressLedger:
    def __init__(self, store, timezone='UTC', clock=utcnow):
        self.store = store
        self.timezone = timezone
        self.clock = clock

    def get_progress(self, learner_id):
        """
        Get learner's progress record, creating an empty one on first access
        """
        def mutate(record):
            if record is not None:
                return None, [], normalize_record(record, learner_id, self.clock())
            created = new_progress_record(learner_id, self.clock())
            return created, [], created

        return self.store.update_progress(learner_id, mutate)

    def award_xp(self, learner_id, kind, amount, description='', counter_deltas=None):
        """
        Award XP for an activity, bump counters, recompute level and unlock badges
        """
        validate_amount(amount)
        if kind not in XP_KINDS:
            raise InvalidArgumentError(f"Unknown XP kind: {kind}", field='kind')
        validate_counter_deltas(counter_deltas)

        def mutate(record):
            now = self.clock()
            current = normalize_record(record, learner_id, now) if record else new_progress_record(learner_id, now)
            updated, earned = apply_xp(current, amount, counter_deltas, now)
            transaction = make_transaction(learner_id, kind, amount, description, now)
            result = {
                'new_xp': updated['xp'],
                'new_level': updated['level'],
                'badges_earned': earned,
                'level_up': updated['level'] > current['level'],
            }
            return updated, [transaction], result

        result = self.store.update_progress(learner_id, mutate)

        logger.info(f"Awarded {amount} XP ({kind}) to learner {learner_id}, total XP: {result['new_xp']}")
        if result['level_up']:
            logger.info(f"Learner {learner_id} reached level {result['new_level']}")
        if result['badges_earned']:
            logger.info(f"Learner {learner_id} earned badges: {', '.join(result['badges_earned'])}")
        return result

    def update_streak(self, learner_id, today=None):
        """
        Record a day of activity; consecutive days grow the streak, gaps reset it
        """
        day = parse_date(today) if today is not None else current_date(self.timezone)

        def mutate(record):
            now = self.clock()
            current = normalize_record(record, learner_id, now) if record else new_progress_record(learner_id, now)
            updated, bonuses = apply_streak(current, day, now)

            if updated is None:
                result = {
                    'streak': current['streak'],
                    'longest_streak': current['longest_streak'],
                    'xp_awarded': 0,
                    'new_xp': current['xp'],
                    'new_level': current['level'],
                    'badges_earned': [],
                }
                return (current if record is None else None), [], result

            transactions = [make_transaction(learner_id, 'streak_bonus', amount, description, now)
                            for amount, description in bonuses]
            result = {
                'streak': updated['streak'],
                'longest_streak': updated['longest_streak'],
                'xp_awarded': sum(amount for amount, _ in bonuses),
                'new_xp': updated['xp'],
                'new_level': updated['level'],
                'badges_earned': [b for b in updated['badges'] if b not in current['badges']],
            }
            return updated, transactions, result

        result = self.store.update_progress(learner_id, mutate)

        if result['xp_awarded']:
            logger.info(f"Learner {learner_id} streak now {result['streak']} day(s), awarded {result['xp_awarded']} XP")
        return result

    def grant_badge(self, learner_id, badge_id):
        """
        Grant a badge that is awarded explicitly rather than derived from counters
        """
        if badge_id not in BADGE_IDS:
            raise InvalidArgumentError(f"Unknown badge: {badge_id}", field='badge_id')

        def mutate(record):
            now = self.clock()
            current = normalize_record(record, learner_id, now) if record else new_progress_record(learner_id, now)
            if badge_id in current['badges']:
                return None, [], {'badges_earned': [], 'badges': current['badges']}
            updated = copy.deepcopy(current)
            updated['badges'] = updated['badges'] + [badge_id]
            updated['updated_at'] = now
            return updated, [], {'badges_earned': [badge_id], 'badges': updated['badges']}

        result = self.store.update_progress(learner_id, mutate)
        if result['badges_earned']:
            logger.info(f"Granted badge {badge_id} to learner {learner_id}")
        return result

    def award_quiz(self, learner_id, quiz_result, completed_xp, perfect_xp):
        """
        Credit a scored quiz and store its result in one atomic update.

        A perfect score adds the perfect_quiz XP and the perfect_score badge.
        The result is only stored if the award is, so a failed write can be retried.
        """
        validate_amount(completed_xp)
        validate_amount(perfect_xp)
        perfect = quiz_result['accuracy'] == 100

        def mutate(record):
            now = self.clock()
            current = normalize_record(record, learner_id, now) if record else new_progress_record(learner_id, now)
            updated, earned = apply_xp(current, completed_xp, {'quizzes_completed': 1}, now)
            transactions = [make_transaction(learner_id, 'quiz_completed', completed_xp,
                                             f"Quiz completed with {quiz_result['accuracy']}% accuracy", now)]
            xp_awarded = completed_xp

            if perfect:
                updated, bonus_earned = apply_xp(updated, perfect_xp, None, now)
                earned = earned + bonus_earned
                if 'perfect_score' not in updated['badges']:
                    updated['badges'] = updated['badges'] + ['perfect_score']
                    earned = earned + ['perfect_score']
                transactions.append(make_transaction(learner_id, 'perfect_quiz', perfect_xp, 'Perfect quiz score', now))
                xp_awarded += perfect_xp

            result = {
                'xp_awarded': xp_awarded,
                'new_xp': updated['xp'],
                'new_level': updated['level'],
                'badges_earned': earned,
                'level_up': updated['level'] > current['level'],
            }
            return updated, transactions, result

        result = self.store.update_progress(learner_id, mutate, quiz_result=quiz_result)

        logger.info(f"Awarded {result['xp_awarded']} XP for quiz attempt {quiz_result['attempt_id']} "
                    f"to learner {learner_id}, total XP: {result['new_xp']}")
        if result['badges_earned']:
            logger.info(f"Learner {learner_id} earned badges: {', '.join(result['badges_earned'])}")
        return result
