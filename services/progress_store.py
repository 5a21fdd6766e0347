"""
Progress Store for TutorQuest Platform
Persistence for progress records, XP transactions and quiz results
"""

import copy
import itertools
import logging
import threading
import uuid

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from utils.error_handler import TutorQuestError, AlreadySubmittedError, NotFoundError, DatabaseError

logger = logging.getLogger(__name__)

PROGRESS_COLLECTION = 'student_progress'
TRANSACTIONS_COLLECTION = 'xp_transactions'
RESULTS_COLLECTION = 'quiz_results'

def _already_submitted(attempt_id):
    return AlreadySubmittedError(f"Quiz attempt {attempt_id} was already submitted", attempt_id=attempt_id)

class FirestoreProgressStore:
    """
    Firestore-backed store; per-learner updates run inside a transaction
    """

    def __init__(self, db):
        self.db = db
        self.progress_ref = db.collection(PROGRESS_COLLECTION)
        self.transactions_ref = db.collection(TRANSACTIONS_COLLECTION)
        self.results_ref = db.collection(RESULTS_COLLECTION)

    def load_progress(self, learner_id):
        try:
            progress_doc = self.progress_ref.document(learner_id).get()
            return progress_doc.to_dict() if progress_doc.exists else None
        except Exception as e:
            raise self._wrap(e, f"load progress for {learner_id}")

    def save_progress(self, record):
        try:
            self.progress_ref.document(record['learner_id']).set(record)
        except Exception as e:
            raise self._wrap(e, f"save progress for {record.get('learner_id')}")

    def append_transaction(self, transaction):
        try:
            self.transactions_ref.add(transaction)
        except Exception as e:
            raise self._wrap(e, "append XP transaction")

    def update_progress(self, learner_id, mutator, quiz_result=None):
        """
        Read the learner's record, apply mutator and write the outcome atomically.

        mutator(record_or_None) returns (updated_record_or_None, transactions, result).
        Firestore re-runs it when a concurrent write touched the same document.
        When quiz_result is given it is created in the same transaction, so the
        result exists only if the progress write committed too.
        """
        progress_ref = self.progress_ref.document(learner_id)
        transactions_ref = self.transactions_ref
        result_ref = self.results_ref.document(quiz_result['attempt_id']) if quiz_result else None

        @firestore.transactional
        def run(transaction):
            snapshot = progress_ref.get(transaction=transaction)
            if result_ref is not None and result_ref.get(transaction=transaction).exists:
                raise _already_submitted(quiz_result['attempt_id'])
            current = snapshot.to_dict() if snapshot.exists else None
            updated, new_transactions, result = mutator(current)
            if updated is not None:
                transaction.set(progress_ref, updated)
            for entry in new_transactions:
                transaction.set(transactions_ref.document(), entry)
            if result_ref is not None:
                transaction.create(result_ref, quiz_result)
            return result

        try:
            return run(self.db.transaction())
        except google_exceptions.AlreadyExists as e:
            if quiz_result is None:
                raise self._wrap(e, f"update progress for {learner_id}")
            raise _already_submitted(quiz_result['attempt_id'])
        except Exception as e:
            raise self._wrap(e, f"update progress for {learner_id}")

    def list_transactions(self, learner_id, limit=20):
        try:
            query = (self.transactions_ref
                     .where('learner_id', '==', learner_id)
                     .order_by('created_at', direction=firestore.Query.DESCENDING)
                     .limit(limit))
            history = []
            for transaction_doc in query.stream():
                entry = transaction_doc.to_dict()
                entry['id'] = transaction_doc.id
                history.append(entry)
            return history
        except Exception as e:
            raise self._wrap(e, f"list XP transactions for {learner_id}")

    def top_progress(self, limit=10):
        try:
            query = self.progress_ref.order_by('xp', direction=firestore.Query.DESCENDING).limit(limit)
            entries = []
            for progress_doc in query.stream():
                record = progress_doc.to_dict()
                record.setdefault('learner_id', progress_doc.id)
                entries.append(record)
            return entries
        except Exception as e:
            raise self._wrap(e, "read leaderboard")

    def save_quiz_result(self, result):
        attempt_id = result['attempt_id']
        try:
            # create() fails if the document exists, so one attempt is scored once
            self.results_ref.document(attempt_id).create(result)
        except google_exceptions.AlreadyExists:
            raise _already_submitted(attempt_id)
        except Exception as e:
            raise self._wrap(e, f"save quiz result {attempt_id}")

    def load_quiz_result(self, attempt_id):
        try:
            result_doc = self.results_ref.document(attempt_id).get()
            return result_doc.to_dict() if result_doc.exists else None
        except Exception as e:
            raise self._wrap(e, f"load quiz result {attempt_id}")

    def _wrap(self, error, action):
        if isinstance(error, TutorQuestError):
            return error
        if isinstance(error, google_exceptions.NotFound):
            logger.warning(f"Not found while trying to {action}: {str(error)}")
            return NotFoundError(f"Failed to {action}: not found")
        logger.error(f"Error trying to {action}: {str(error)}")
        return DatabaseError(f"Failed to {action}: {str(error)}")

class MemoryProgressStore:
    """
    Process-local store; one lock per learner serialises updates to that learner only
    """

    def __init__(self):
        self.records = {}
        self.transactions = []
        self.quiz_results = {}
        self._locks = {}
        self._registry_lock = threading.Lock()
        self._sequence = itertools.count()

    def _lock_for(self, learner_id):
        with self._registry_lock:
            return self._locks.setdefault(learner_id, threading.Lock())

    def load_progress(self, learner_id):
        record = self.records.get(learner_id)
        return copy.deepcopy(record) if record is not None else None

    def save_progress(self, record):
        with self._lock_for(record['learner_id']):
            with self._registry_lock:
                self.records[record['learner_id']] = copy.deepcopy(record)

    def append_transaction(self, transaction):
        entry = copy.deepcopy(transaction)
        entry['id'] = str(uuid.uuid4())
        with self._registry_lock:
            self.transactions.append((next(self._sequence), entry))

    def update_progress(self, learner_id, mutator, quiz_result=None):
        with self._lock_for(learner_id):
            current = self.load_progress(learner_id)
            updated, new_transactions, result = mutator(current)
            with self._registry_lock:
                if quiz_result is not None:
                    if quiz_result['attempt_id'] in self.quiz_results:
                        raise _already_submitted(quiz_result['attempt_id'])
                    self.quiz_results[quiz_result['attempt_id']] = copy.deepcopy(quiz_result)
                if updated is not None:
                    self.records[learner_id] = copy.deepcopy(updated)
            for entry in new_transactions:
                self.append_transaction(entry)
            return result

    def list_transactions(self, learner_id, limit=20):
        with self._registry_lock:
            matching = [(seq, entry) for seq, entry in self.transactions if entry['learner_id'] == learner_id]
        matching.sort(key=lambda item: (item[1]['created_at'], item[0]), reverse=True)
        return [copy.deepcopy(entry) for _, entry in matching[:limit]]

    def top_progress(self, limit=10):
        with self._registry_lock:
            snapshot = list(self.records.values())
        ranked = sorted(snapshot, key=lambda r: r['xp'], reverse=True)
        return [copy.deepcopy(record) for record in ranked[:limit]]

    def save_quiz_result(self, result):
        attempt_id = result['attempt_id']
        with self._registry_lock:
            if attempt_id in self.quiz_results:
                raise _already_submitted(attempt_id)
            self.quiz_results[attempt_id] = copy.deepcopy(result)

    def load_quiz_result(self, attempt_id):
        result = self.quiz_results.get(attempt_id)
        return copy.deepcopy(result) if result is not None else None
