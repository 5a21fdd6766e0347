import threading
from datetime import date, timedelta

import pytest

from services.progress_ledger import (
    LEVELS, ProgressLedger, level_for, progress_within_level, evaluate_badges,
    new_progress_record, round_half_up,
)
from utils.error_handler import AlreadySubmittedError, InvalidArgumentError

class TestLevelTable:

    def test_level_for_thresholds(self):
        assert level_for(0) == 1
        assert level_for(99) == 1
        assert level_for(100) == 2
        assert level_for(299) == 2
        assert level_for(300) == 3
        assert level_for(9999) == 9
        assert level_for(10000) == 10
        assert level_for(250000) == 10

    def test_level_is_monotonic_in_xp(self):
        levels = [level_for(xp) for xp in range(0, 12000, 37)]
        assert levels == sorted(levels)

    def test_table_starts_at_zero(self):
        assert LEVELS[0]['xp_required'] == 0

    def test_progress_within_level(self):
        progress = progress_within_level(105)

        assert progress['level'] == 2
        assert progress['title'] == 'Learner'
        assert progress['current_threshold'] == 100
        assert progress['next_threshold'] == 300
        assert progress['percent_to_next'] == 3  # 2.5 rounds half up

    def test_progress_at_level_start_is_zero(self):
        assert progress_within_level(300)['percent_to_next'] == 0

    def test_progress_at_max_level_is_100(self):
        progress = progress_within_level(15000)

        assert progress['level'] == 10
        assert progress['title'] == 'Grandmaster'
        assert progress['next_threshold'] == progress['current_threshold']
        assert progress['percent_to_next'] == 100

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(12.5) == 13
        assert round_half_up(66.66) == 67
        assert round_half_up(0.4) == 0

class TestAwardXP:

    def test_fresh_learner_session_completed(self, ledger):
        result = ledger.award_xp('learner-1', 'session_completed', 50, 'First session',
                                 {'sessions_completed': 1})

        assert result['new_xp'] == 50
        assert result['new_level'] == 1
        assert result['badges_earned'] == ['first_steps']

    def test_crossing_level_threshold(self, ledger, seed_record, memory_store):
        seed_record('learner-1', xp=95)

        result = ledger.award_xp('learner-1', 'quiz_completed', 10, 'Quiz')

        assert result['new_xp'] == 105
        assert result['new_level'] == 2
        assert result['level_up'] is True
        assert memory_store.load_progress('learner-1')['level'] == 2
        assert progress_within_level(result['new_xp'])['percent_to_next'] == 3

    def test_counters_and_transaction_log(self, ledger, memory_store):
        ledger.award_xp('learner-1', 'session_completed', 50, 'Algebra session',
                        {'sessions_completed': 1, 'total_study_hours': 2})

        record = memory_store.load_progress('learner-1')
        assert record['sessions_completed'] == 1
        assert record['total_study_hours'] == 2
        assert record['quizzes_completed'] == 0

        history = memory_store.list_transactions('learner-1')
        assert len(history) == 1
        assert history[0]['kind'] == 'session_completed'
        assert history[0]['xp_amount'] == 50
        assert history[0]['description'] == 'Algebra session'

    def test_updated_at_advances(self, ledger, memory_store):
        ledger.award_xp('learner-1', 'goal_achieved', 100, 'Goal')
        first = memory_store.load_progress('learner-1')['updated_at']

        ledger.award_xp('learner-1', 'goal_achieved', 100, 'Goal')
        second = memory_store.load_progress('learner-1')

        assert second['updated_at'] > first
        assert second['created_at'] <= first

    @pytest.mark.parametrize('amount', [0, -5, 2.5, True, None])
    def test_rejects_invalid_amount(self, ledger, memory_store, amount):
        with pytest.raises(InvalidArgumentError):
            ledger.award_xp('learner-1', 'quiz_completed', amount, 'Quiz')

        assert memory_store.load_progress('learner-1') is None
        assert memory_store.list_transactions('learner-1') == []

    def test_rejects_unknown_kind(self, ledger):
        with pytest.raises(InvalidArgumentError, match='Unknown XP kind'):
            ledger.award_xp('learner-1', 'bribe', 10, 'Nope')

    def test_rejects_unknown_counter(self, ledger):
        with pytest.raises(InvalidArgumentError, match='Unknown counter'):
            ledger.award_xp('learner-1', 'quiz_completed', 10, 'Quiz', {'xp': 5})

    def test_rejects_negative_counter_delta(self, ledger):
        with pytest.raises(InvalidArgumentError):
            ledger.award_xp('learner-1', 'quiz_completed', 10, 'Quiz', {'quizzes_completed': -1})

    def test_level_badges(self, ledger):
        result = ledger.award_xp('learner-1', 'goal_achieved', 1000, 'Big goal')
        assert result['new_level'] == 5
        assert result['badges_earned'] == ['dedicated_learner']

        result = ledger.award_xp('learner-1', 'goal_achieved', 9000, 'Huge goal')
        assert result['new_level'] == 10
        assert result['badges_earned'] == ['top_scholar']

    def test_badges_are_never_re_added_or_removed(self, ledger, seed_record, memory_store):
        # quiz_whiz is owned even though the counter says otherwise
        seed_record('learner-1', badges=['quiz_whiz'])

        for _ in range(5):
            result = ledger.award_xp('learner-1', 'quiz_completed', 10, 'Quiz', {'quizzes_completed': 1})
            assert 'quiz_whiz' not in result['badges_earned']

        badges = memory_store.load_progress('learner-1')['badges']
        assert badges.count('quiz_whiz') == 1

    def test_stale_level_is_recomputed(self, ledger, seed_record, memory_store):
        seed_record('learner-1', xp=150, level=7)

        result = ledger.award_xp('learner-1', 'quiz_completed', 10, 'Quiz')

        assert result['new_level'] == 2
        assert memory_store.load_progress('learner-1')['level'] == 2

    def test_concurrent_awards_lose_no_increments(self, ledger, memory_store):
        def award():
            for _ in range(10):
                ledger.award_xp('learner-1', 'quiz_completed', 1, 'Quiz', {'quizzes_completed': 1})

        threads = [threading.Thread(target=award) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        record = memory_store.load_progress('learner-1')
        assert record['xp'] == 80
        assert record['quizzes_completed'] == 80
        assert len(memory_store.list_transactions('learner-1', limit=100)) == 80

class TestUpdateStreak:

    def test_three_consecutive_days(self, ledger, memory_store):
        day = date(2024, 3, 1)
        results = [ledger.update_streak('learner-1', day + timedelta(days=i)) for i in range(3)]

        record = memory_store.load_progress('learner-1')
        assert record['streak'] == 3
        assert record['longest_streak'] == 3
        assert 'streak_starter' in record['badges']
        assert results[2]['badges_earned'] == ['streak_starter']
        assert sum(r['xp_awarded'] for r in results) == 30
        assert record['xp'] == 30

    def test_same_day_is_idempotent(self, ledger, memory_store):
        first = ledger.update_streak('learner-1', date(2024, 3, 1))
        before = memory_store.load_progress('learner-1')

        second = ledger.update_streak('learner-1', date(2024, 3, 1))
        after = memory_store.load_progress('learner-1')

        assert first['xp_awarded'] == 10
        assert second == {
            'streak': 1, 'longest_streak': 1, 'xp_awarded': 0,
            'new_xp': 10, 'new_level': 1, 'badges_earned': [],
        }
        assert after == before
        assert len(memory_store.list_transactions('learner-1')) == 1

    def test_gap_resets_streak_but_keeps_longest(self, ledger, memory_store):
        for offset in (0, 1, 2, 3):
            ledger.update_streak('learner-1', date(2024, 3, 1) + timedelta(days=offset))

        result = ledger.update_streak('learner-1', date(2024, 3, 6))

        assert result['streak'] == 1
        assert result['longest_streak'] == 4
        record = memory_store.load_progress('learner-1')
        assert record['last_active_date'] == '2024-03-06'

    def test_earlier_date_is_ignored(self, ledger, memory_store):
        ledger.update_streak('learner-1', date(2024, 3, 10))
        before = memory_store.load_progress('learner-1')

        results = [ledger.update_streak('learner-1', day)
                   for day in (date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 1), date(2024, 3, 9))]

        assert [r['xp_awarded'] for r in results] == [0, 0, 0, 0]
        assert memory_store.load_progress('learner-1') == before
        assert before['last_active_date'] == '2024-03-10'
        assert len(memory_store.list_transactions('learner-1')) == 1

    def test_seven_day_milestone(self, ledger, memory_store):
        results = [ledger.update_streak('learner-1', date(2024, 3, 1) + timedelta(days=i)) for i in range(7)]

        assert results[-1]['streak'] == 7
        assert results[-1]['xp_awarded'] == 60
        assert 'week_warrior' in results[-1]['badges_earned']

        history = memory_store.list_transactions('learner-1', limit=50)
        assert len(history) == 8
        assert all(entry['kind'] == 'streak_bonus' for entry in history)
        assert sorted(entry['xp_amount'] for entry in history) == [10] * 7 + [50]

    def test_thirty_day_milestone(self, ledger, memory_store):
        for i in range(30):
            result = ledger.update_streak('learner-1', date(2024, 1, 1) + timedelta(days=i))

        record = memory_store.load_progress('learner-1')
        assert result['xp_awarded'] == 210
        assert record['xp'] == 300 + 50 + 200
        assert record['level'] == 3
        assert {'streak_starter', 'week_warrior', 'monthly_master'} <= set(record['badges'])

    def test_accepts_iso_string_dates(self, ledger):
        ledger.update_streak('learner-1', '2024-03-01')
        result = ledger.update_streak('learner-1', '2024-03-02')

        assert result['streak'] == 2

    def test_defaults_to_current_date(self, memory_store, clock):
        ledger = ProgressLedger(memory_store, timezone='Asia/Kolkata', clock=clock)

        result = ledger.update_streak('learner-1')

        assert result['streak'] == 1
        assert memory_store.load_progress('learner-1')['last_active_date'] != ''

class TestGrantBadge:

    def test_grant_perfect_score(self, ledger, memory_store):
        result = ledger.grant_badge('learner-1', 'perfect_score')

        assert result['badges_earned'] == ['perfect_score']
        assert memory_store.load_progress('learner-1')['badges'] == ['perfect_score']

    def test_grant_is_idempotent(self, ledger, memory_store):
        ledger.grant_badge('learner-1', 'perfect_score')
        result = ledger.grant_badge('learner-1', 'perfect_score')

        assert result['badges_earned'] == []
        assert memory_store.load_progress('learner-1')['badges'] == ['perfect_score']

    def test_unknown_badge(self, ledger):
        with pytest.raises(InvalidArgumentError, match='Unknown badge'):
            ledger.grant_badge('learner-1', 'gold_star')

class TestAwardQuiz:

    def quiz_result(self, attempt_id, accuracy):
        return {'attempt_id': attempt_id, 'learner_id': 'learner-1', 'accuracy': accuracy}

    def test_perfect_quiz_is_one_update(self, ledger, memory_store, mocker):
        update = mocker.spy(memory_store, 'update_progress')

        result = ledger.award_quiz('learner-1', self.quiz_result('attempt-1', 100), 25, 25)

        assert update.call_count == 1
        assert result['xp_awarded'] == 50
        assert result['badges_earned'] == ['perfect_score']
        record = memory_store.load_progress('learner-1')
        assert record['xp'] == 50
        assert record['quizzes_completed'] == 1
        assert memory_store.load_quiz_result('attempt-1')['accuracy'] == 100

    def test_imperfect_quiz(self, ledger, memory_store):
        result = ledger.award_quiz('learner-1', self.quiz_result('attempt-1', 80), 25, 25)

        assert result['xp_awarded'] == 25
        assert result['badges_earned'] == []
        assert [t['kind'] for t in memory_store.list_transactions('learner-1')] == ['quiz_completed']

    def test_stored_attempt_is_not_credited_twice(self, ledger, memory_store):
        ledger.award_quiz('learner-1', self.quiz_result('attempt-1', 100), 25, 25)

        with pytest.raises(AlreadySubmittedError):
            ledger.award_quiz('learner-1', self.quiz_result('attempt-1', 100), 25, 25)

        record = memory_store.load_progress('learner-1')
        assert record['xp'] == 50
        assert record['quizzes_completed'] == 1
        assert len(memory_store.list_transactions('learner-1')) == 2

    def test_second_perfect_quiz_keeps_single_badge(self, ledger, memory_store):
        ledger.award_quiz('learner-1', self.quiz_result('attempt-1', 100), 25, 25)
        result = ledger.award_quiz('learner-1', self.quiz_result('attempt-2', 100), 25, 25)

        assert result['badges_earned'] == []
        assert memory_store.load_progress('learner-1')['badges'].count('perfect_score') == 1

class TestBadgeRules:

    def test_perfect_score_is_not_derived(self, start_time):
        record = new_progress_record('learner-1', start_time)
        record.update(quizzes_completed=100, sessions_completed=100, goals_completed=5,
                      longest_streak=40, level=10)

        earned = evaluate_badges(record)

        assert 'perfect_score' not in earned
        assert len(earned) == 10

    def test_get_progress_creates_record_lazily(self, ledger, memory_store):
        record = ledger.get_progress('new-learner')

        assert record['xp'] == 0
        assert record['level'] == 1
        assert record['badges'] == []
        assert memory_store.load_progress('new-learner') == record
