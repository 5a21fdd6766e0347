"""
TutorQuest Backend - Gamification and Quiz Scoring for a Tutoring Marketplace
Firebase Cloud Functions + Firestore Backend

Main entry point for the Flask API wrapped as Firebase Functions
"""

import os
import logging

from flask import Flask, request, jsonify
from flask_cors import CORS
from firebase_functions import https_fn, options
from firebase_admin import initialize_app, get_app, credentials, firestore

from services.gamification_service import GamificationService
from services.progress_store import FirestoreProgressStore, MemoryProgressStore
from utils.config import Config
from utils.error_handler import handle_error, validate_request_data, format_error_response

config = Config.from_env()

# Configure logging
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

def init_firestore(config):
    """
    Initialize the Firebase Admin SDK once and return a Firestore client
    """
    try:
        get_app()
    except ValueError:
        cred_path = config.credentials_path or os.path.join(os.path.dirname(__file__), 'serviceAccountKey.json')
        if os.path.exists(cred_path):
            initialize_app(credentials.Certificate(cred_path))
        else:
            # Use default credentials in production
            initialize_app()
    return firestore.client()

def build_store(config):
    if config.progress_store == 'memory':
        logger.info("Using in-memory progress store")
        return MemoryProgressStore()
    return FirestoreProgressStore(init_firestore(config))

def create_app(config, store=None):
    app = Flask(__name__)
    CORS(app, origins=config.allowed_origins)

    service = GamificationService(store if store is not None else build_store(config), config)
    app.config['GAMIFICATION_SERVICE'] = service

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'service': 'tutorquest-backend',
            'version': '1.0.0',
            'store': config.progress_store,
        })

    # ============= CATALOGUE ENDPOINTS =============

    @app.route('/levels', methods=['GET'])
    def get_levels():
        return jsonify({'levels': service.get_level_table()})

    @app.route('/badges', methods=['GET'])
    def get_badges():
        return jsonify({'badges': service.get_badge_catalogue()})

    # ============= PROGRESS ENDPOINTS =============

    @app.route('/progress/<learner_id>', methods=['GET'])
    def get_progress(learner_id):
        """Get learner progress with level and badge breakdown"""
        try:
            return jsonify(service.get_progress_summary(learner_id))
        except Exception as e:
            return handle_error(e)

    @app.route('/progress/<learner_id>/history', methods=['GET'])
    def get_history(learner_id):
        """Get learner's recent XP transactions"""
        try:
            history = service.get_xp_history(learner_id, request.args.get('limit'))
            return jsonify({'history': history, 'count': len(history)})
        except Exception as e:
            return handle_error(e)

    @app.route('/progress/<learner_id>/streak', methods=['POST'])
    def update_streak(learner_id):
        """Record today's activity for the learner's streak"""
        try:
            data = request.get_json(silent=True) or {}
            result = service.record_daily_login(learner_id, data.get('today'))
            return jsonify(result)
        except Exception as e:
            return handle_error(e)

    @app.route('/progress/<learner_id>/sessions', methods=['POST'])
    def complete_session(learner_id):
        """Reward a completed tutoring session"""
        try:
            data = request.get_json(silent=True)
            validate_request_data(data, ['session_id'], {'hours': int})
            result = service.complete_session(learner_id, data['session_id'], data.get('hours', 0))
            return jsonify(result)
        except Exception as e:
            return handle_error(e)

    @app.route('/progress/<learner_id>/goals', methods=['POST'])
    def complete_goal(learner_id):
        """Reward a learning goal that reached 100%"""
        try:
            data = request.get_json(silent=True)
            validate_request_data(data, ['goal_title'], {'goal_title': str})
            result = service.complete_goal(learner_id, data['goal_title'])
            return jsonify(result)
        except Exception as e:
            return handle_error(e)

    # ============= QUIZ ENDPOINTS =============

    @app.route('/quiz-attempts/<attempt_id>/submit', methods=['POST'])
    def submit_quiz(attempt_id):
        """Score a quiz attempt and award XP"""
        try:
            data = request.get_json(silent=True)
            result = service.submit_quiz_answers(attempt_id, data)
            return jsonify(result)
        except Exception as e:
            return handle_error(e)

    @app.route('/quiz-attempts/<attempt_id>/result', methods=['GET'])
    def get_quiz_result(attempt_id):
        """Get the stored result of a submitted quiz attempt"""
        try:
            return jsonify(service.get_quiz_result(attempt_id))
        except Exception as e:
            return handle_error(e)

    # ============= LEADERBOARD ENDPOINTS =============

    @app.route('/leaderboard', methods=['GET'])
    def get_leaderboard():
        """Get learners ranked by XP"""
        try:
            return jsonify(service.get_leaderboard(request.args.get('limit')))
        except Exception as e:
            return handle_error(e)

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify(format_error_response('Endpoint not found', 'NOT_FOUND')), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify(format_error_response('Method not allowed', 'METHOD_NOT_ALLOWED')), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {str(error)}")
        return jsonify(format_error_response('Internal server error', 'INTERNAL_ERROR')), 500

    return app

_app = None

def get_wsgi_app():
    global _app
    if _app is None:
        _app = create_app(config)
    return _app

# Firebase Cloud Function wrapper
@https_fn.on_request(
    cors=options.CorsOptions(
        cors_origins=config.allowed_origins,
        cors_methods=["GET", "POST", "OPTIONS"]
    )
)
def api(req):
    """Main Cloud Function entry point"""
    app = get_wsgi_app()
    with app.request_context(req.environ):
        return app.full_dispatch_request()

# For local development
if __name__ == '__main__':
    get_wsgi_app().run(debug=config.is_development, host='0.0.0.0', port=8080)
